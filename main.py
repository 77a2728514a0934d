#!/usr/bin/env python3
"""
keyward -- operator commands for the credential lifecycle service.

Usage:
  python main.py check-password 'Strong#123'
  python main.py check-password --stdin < candidates.txt
  python main.py purge-expired

Environment variables:
  SECRET_KEY, DATABASE_URL and the PASSWORD_* policy fields, exactly as read
  by the API (see core/config.py). DEBUG=true generates a throwaway key.
"""

import argparse
import sys
from typing import Optional

from auth.otp import OtpManager
from auth.policy import PasswordPolicy, compile_policy
from auth.sessions import SessionRegistry
from auth.store import OtpStore, SessionStore, create_auth_engine
from core.config import get_settings


def _check_passwords(policy: PasswordPolicy, candidates: list[str]) -> int:
    """Print one verdict line per candidate. Returns 0 only if all pass."""
    failures = 0
    for candidate in candidates:
        reason = policy.check(candidate)
        if reason is None:
            print("  [ok]   accepted")
        else:
            failures += 1
            print(f"  [fail] {reason}")
    return 1 if failures else 0


def _purge_expired() -> int:
    settings = get_settings()
    engine = create_auth_engine(settings.database_url)
    try:
        otp = OtpManager(OtpStore(engine), settings.secret_key, ttl_seconds=settings.otp_ttl_seconds)
        sessions = SessionRegistry(SessionStore(engine), ttl_seconds=settings.token_expire_seconds)
        codes = otp.purge_expired()
        stale = sessions.expire_stale()
    finally:
        engine.dispose()
    print(f"  Removed {codes} expired reset code(s), deactivated {stale} expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Operator commands for the keyward credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py check-password 'Strong#123'
  PASSWORD_MIN_LENGTH=12 python main.py check-password 'Strong#123'
  python main.py purge-expired
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    check = commands.add_parser("check-password", help="Test candidates against the configured password policy")
    check.add_argument("passwords", nargs="*", metavar="PASSWORD", help="Candidate passwords")
    check.add_argument(
        "--stdin",
        action="store_true",
        help="Read candidates from standard input, one per line",
    )

    commands.add_parser("purge-expired", help="Delete expired reset codes and deactivate expired sessions")

    args = parser.parse_args(argv)

    if args.command == "check-password":
        candidates: list[str] = list(args.passwords)
        if args.stdin:
            candidates.extend(line.rstrip("\n") for line in sys.stdin if line.strip())
        if not candidates:
            check.print_help()
            return 2
        return _check_passwords(compile_policy(get_settings().password_policy()), candidates)

    if args.command == "purge-expired":
        return _purge_expired()

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
