#!/usr/bin/env python3
"""
SiteGuard -- operator command line.

Usage:
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password-stdin < secret.txt
  python main.py purge-sessions

Environment variables (see core/config.py):
  SECRET_KEY    Required unless DEBUG=true. Must match the API process, or
                sessions created here would not resolve there.
  DATABASE_URL  Auth database. Defaults to auth/siteguard_auth.db.
"""

import argparse
import getpass
import re
import sys

from auth.authenticator import Authenticator
from auth.errors import DuplicateEmail, StorageUnavailable
from auth.models import EMAIL_PATTERN
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _read_password(from_stdin: bool) -> str:
    """Read a new password from stdin or an interactive prompt (entered twice)."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def _create_admin(authenticator: Authenticator, email: str, from_stdin: bool) -> int:
    if not re.fullmatch(EMAIL_PATTERN, email.strip()):
        print(f"  [!] '{email}' is not a valid email address.")
        return 1
    password = _read_password(from_stdin)
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1
    try:
        principal = authenticator.create_admin(email, password)
    except DuplicateEmail:
        print(f"  [!] An account for '{email}' already exists.")
        return 1
    print(f"  Admin account created: {principal.email} ({principal.id})")
    return 0


def _purge_sessions(authenticator: Authenticator) -> int:
    removed = authenticator.sessions.purge_expired()
    print(f"  Removed {removed} expired session(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="siteguard",
        description="Operator tasks for the SiteGuard authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  echo 'correcthorse123' | python main.py create-admin admin@example.com --password-stdin
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account (first-run bootstrap)")
    create.add_argument("email", help="Email address of the new admin")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    sub.add_parser("purge-sessions", help="Delete expired sessions now instead of waiting for the sweep")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    authenticator = Authenticator.from_settings(get_settings())
    try:
        if args.command == "create-admin":
            return _create_admin(authenticator, args.email, args.password_stdin)
        return _purge_sessions(authenticator)
    except StorageUnavailable:
        print("  [!] The auth database is unavailable. Check DATABASE_URL and try again.")
        return 1
    finally:
        authenticator.close()


if __name__ == "__main__":
    sys.exit(main())
