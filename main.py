#!/usr/bin/env python3
"""
localauth admin CLI -- manage local credentials from a shell.

Usage:
  python main.py register --email alice@example.com
  python main.py register --email alice@example.com --username alice
  python main.py login alice@example.com
  python main.py passwd alice
  python main.py passwd --id 7

Passwords are always read with getpass (never from argv, where they would
land in shell history and the process table).

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential database (default: ./localauth.db)
  BCRYPT_ROUNDS  bcrypt cost factor for new hashes (default: 12)
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import AuthError, FatalInternal
from auth.lifecycle import CredentialLifecycle
from auth.models import LoginSuccess
from bootstrap import build_lifecycle
from core.config import get_settings

logger = logging.getLogger("localauth.cli")

_MIN_PASSWORD_LENGTH = 8


def _read_new_password() -> Optional[str]:
    """Prompt twice for a new password. Returns None if the entries are unusable."""
    password = getpass.getpass("New password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    if getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def _cmd_register(lifecycle: CredentialLifecycle, args: argparse.Namespace) -> int:
    password = _read_new_password()
    if password is None:
        return 1
    draft = {"email": args.email, "username": args.username, "password": password}
    account = lifecycle.register(draft)
    print(f"  Registered account {account.id} ({account.username}).")
    return 0


def _cmd_login(lifecycle: CredentialLifecycle, args: argparse.Namespace) -> int:
    outcome = lifecycle.login(args.identifier, getpass.getpass("Password: "))
    if isinstance(outcome, LoginSuccess):
        print(f"  OK: account {outcome.account.id} ({outcome.account.username}).")
        return 0
    print(f"  [!] Login failed: {outcome.reason.value.replace('_', ' ')}.")
    return 1


def _cmd_passwd(lifecycle: CredentialLifecycle, args: argparse.Namespace) -> int:
    password = _read_new_password()
    if password is None:
        return 1
    partial = {"id": args.id} if args.id is not None else {"username": args.username}
    partial["password"] = password
    account = lifecycle.update_credential(partial)
    print(f"  Password updated for account {account.id} ({account.username}).")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localauth",
        description="Manage local password credentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register --email alice@example.com
  python main.py login alice@example.com
  python main.py passwd alice
  DATABASE_URL=sqlite:////srv/auth.db python main.py passwd --id 7
        """,
    )
    parser.add_argument("--verbose", action="store_true", help="Log lifecycle events to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Create an account with a local password")
    register.add_argument("--email", required=True, help="Email address (also the default username)")
    register.add_argument("--username", default=None, help="Login name; defaults to the email")
    register.set_defaults(handler=_cmd_register)

    login = sub.add_parser("login", help="Check an email/username and password")
    login.add_argument("identifier", help="Email address or username")
    login.set_defaults(handler=_cmd_login)

    passwd = sub.add_parser("passwd", help="Rotate an account's local password")
    target = passwd.add_mutually_exclusive_group(required=True)
    target.add_argument("username", nargs="?", help="Username of the account")
    target.add_argument("--id", type=int, help="Numeric account ID")
    passwd.set_defaults(handler=_cmd_passwd)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    lifecycle, store = build_lifecycle(get_settings())
    try:
        return args.handler(lifecycle, args)
    except FatalInternal as exc:
        logger.error("%s: %s", exc.code, exc.message)
        print("  [!] Internal error; see logs.")
        return 2
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
