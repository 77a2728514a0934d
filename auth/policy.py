"""
auth/policy.py -- Password complexity policy.

PasswordPolicyConfig is an immutable value loaded once at startup (see
core.config.Settings.password_policy). PasswordPolicy compiles it into a
matcher exactly once; validate() is then a pure function of the candidate.

Gates, evaluated cheapest first (any failing gate rejects):
  1. Composite pattern: length within [min_length, max_length], only ASCII
     letters, digits and allowed special characters, plus one lookahead per
     required character class.
  2. Excluded sequences: rejected if any appears as a substring.
  3. Blacklist: rejected if the candidate equals an entry exactly.
  4. Repeated characters: rejected if any character appears twice in a row
     (only when no_repeated_chars is set).

Layer rule: stdlib only. core/ imports this module, so it must never import
from core/, api/ or the rest of auth/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger("keyward.auth.policy")

_REPEATED_RE = re.compile(r"(.)\1", re.DOTALL)


class PolicyConfigError(ValueError):
    """Raised when a password policy configuration is internally inconsistent."""


@dataclass(frozen=True)
class PasswordPolicyConfig:
    min_length: int = 8
    max_length: int = 20
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special_char: bool = True
    allowed_special_chars: str = "!@#$%^&*"
    excluded_sequences: tuple[str, ...] = ("1234", "abcd")
    blacklist: tuple[str, ...] = ("password", "12345678")
    no_repeated_chars: bool = True

    def __post_init__(self) -> None:
        if self.min_length < 1:
            raise PolicyConfigError("min_length must be at least 1.")
        if self.max_length < self.min_length:
            raise PolicyConfigError(
                f"max_length ({self.max_length}) must not be smaller than min_length ({self.min_length})."
            )
        if self.require_special_char and not self.allowed_special_chars:
            raise PolicyConfigError("require_special_char is set but allowed_special_chars is empty.")
        if any(ch.isalnum() or ch.isspace() for ch in self.allowed_special_chars):
            raise PolicyConfigError("allowed_special_chars must not contain letters, digits or whitespace.")
        if any(not seq for seq in self.excluded_sequences):
            raise PolicyConfigError("excluded_sequences must not contain empty strings.")
        # Lists arriving from callers are frozen so the config stays hashable.
        object.__setattr__(self, "excluded_sequences", tuple(self.excluded_sequences))
        object.__setattr__(self, "blacklist", tuple(self.blacklist))


def build_pattern(config: PasswordPolicyConfig) -> re.Pattern[str]:
    """Translate a policy config into one compiled pattern for fullmatch().

    Special characters are escaped individually so characters such as '-',
    ']' or '^' cannot change the meaning of the character class.
    """
    specials = "".join(re.escape(ch) for ch in config.allowed_special_chars)
    pattern = ""
    if config.require_lowercase:
        pattern += "(?=.*[a-z])"
    if config.require_uppercase:
        pattern += "(?=.*[A-Z])"
    if config.require_digit:
        pattern += "(?=.*[0-9])"
    if config.require_special_char:
        pattern += f"(?=.*[{specials}])"
    pattern += f"[A-Za-z0-9{specials}]{{{config.min_length},{config.max_length}}}"
    return re.compile(pattern)


class PasswordPolicy:
    """Compiled password policy.

    Usage:
        policy = PasswordPolicy(PasswordPolicyConfig(min_length=10))
        policy.validate("Strong#123x")   # True
        policy.check("short")            # "Password must be between 10 and 20 characters long."
    """

    def __init__(self, config: PasswordPolicyConfig) -> None:
        self.config = config
        self._pattern = build_pattern(config)

    def validate(self, candidate: str) -> bool:
        """Return True if the candidate passes every gate."""
        return self.check(candidate) is None

    def check(self, candidate: str) -> str | None:
        """Return None if the candidate is acceptable, else a human readable reason."""
        config = self.config
        if not self._pattern.fullmatch(candidate):
            return self._pattern_reason(candidate)
        if any(seq in candidate for seq in config.excluded_sequences):
            return "Password contains a forbidden sequence."
        if candidate in config.blacklist:
            return "Password is too common."
        if config.no_repeated_chars and _REPEATED_RE.search(candidate):
            return "Password must not repeat the same character consecutively."
        return None

    def _pattern_reason(self, candidate: str) -> str:
        """Explain which part of the composite pattern the candidate failed."""
        config = self.config
        if not config.min_length <= len(candidate) <= config.max_length:
            return f"Password must be between {config.min_length} and {config.max_length} characters long."
        allowed = set(config.allowed_special_chars)
        if any(not (_is_ascii_alnum(ch) or ch in allowed) for ch in candidate):
            specials = config.allowed_special_chars or "no special characters"
            return f"Password may only contain letters, digits and {specials}."
        if config.require_lowercase and not any("a" <= ch <= "z" for ch in candidate):
            return "Password must contain a lowercase letter."
        if config.require_uppercase and not any("A" <= ch <= "Z" for ch in candidate):
            return "Password must contain an uppercase letter."
        if config.require_digit and not any("0" <= ch <= "9" for ch in candidate):
            return "Password must contain a digit."
        return f"Password must contain one of {config.allowed_special_chars}."


def _is_ascii_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


@lru_cache(maxsize=32)
def compile_policy(config: PasswordPolicyConfig) -> PasswordPolicy:
    """Return the compiled policy for config, compiling each distinct config once."""
    logger.debug("Compiling password policy (min=%d, max=%d)", config.min_length, config.max_length)
    return PasswordPolicy(config)


def validate_password(candidate: str, config: PasswordPolicyConfig) -> bool:
    """Return True if candidate satisfies config. Pure; reuses the compiled matcher."""
    return compile_policy(config).validate(candidate)
