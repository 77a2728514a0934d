"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly (no passlib wrapper). Each hash embeds its own random
salt, so hashing the same password twice yields two different strings, and
bcrypt.checkpw compares digests in constant time.

bcrypt only looks at the first 72 bytes of its input and bcrypt >= 4.1 raises
on longer input. Both hash() and verify() truncate to 72 bytes explicitly so
long passphrases hash instead of failing, and verify stays consistent with
hash.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("keyward.auth.passwords")

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted one-way password hashing.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("Strong#123")
        hasher.verify("Strong#123", stored)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # unknown-username sign-in is not measurably faster than later ones.
        self._dummy_hash = self.hash("keyward_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash. Malformed hashes return False."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            logger.warning("Stored password hash is malformed")
            return False

    def burn(self, plain: str) -> None:
        """Run one verification against the dummy hash and discard the result.

        Called when the account does not exist so the response takes as long
        as a real password check [C1].
        """
        self.verify(plain, self._dummy_hash)
