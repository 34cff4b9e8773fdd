#!/usr/bin/env python3
"""
Stallmarket -- account administration from the command line.

Seeds the first MAIN_ADMIN and performs the support operations that have no
self-service path. Talks to the same database as the API (DATABASE_URL).

Usage:
  python main.py create-user --email admin@example.com --name "Admin" --role MAIN_ADMIN --verified
  python main.py verify-email user@example.com
  python main.py set-password user@example.com

Passwords are read with getpass when not given on the command line, so they
do not end up in shell history.
"""

import argparse
import getpass
import logging
from typing import Optional

from auth.errors import AuthError
from auth.models import Role, User
from auth.notifications import LogNotifier
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenConfig, TokenService
from core.config import get_settings

_MIN_PASSWORD = 8


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the given password or prompt twice for one. None if the prompts disagree or it is too short."""
    password = given
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return None
    return password


def _build_service(store: UserStore) -> AuthService:
    settings = get_settings()
    return AuthService(store, TokenService(TokenConfig.from_settings(settings)), LogNotifier())


def create_user(store: UserStore, email: str, name: str, role: Role, password: str, verified: bool) -> int:
    try:
        user = store.create(
            User(email=email, name=name, hashed_password=hash_password(password), role=role, is_verified=verified)
        )
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  Created {user.role.value} {user.email} (id={user.id}, verified={user.is_verified}).")
    return 0


def run(argv: Optional[list[str]] = None, store: Optional[UserStore] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="stallmarket",
        description="Stallmarket account administration.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create-user", help="Create an account with any role")
    p_create.add_argument("--email", required=True)
    p_create.add_argument("--name", required=True)
    p_create.add_argument("--role", choices=[r.value for r in Role], default=Role.CUSTOMER.value)
    p_create.add_argument("--password", help="Omit to be prompted")
    p_create.add_argument("--verified", action="store_true", help="Mark the email as already verified")

    p_verify = sub.add_parser("verify-email", help="Mark an account verified without an OTP")
    p_verify.add_argument("email")

    p_reset = sub.add_parser("set-password", help="Overwrite an account's password without an OTP")
    p_reset.add_argument("email")
    p_reset.add_argument("--password", help="Omit to be prompted")

    args = parser.parse_args(argv)

    owns_store = store is None
    if store is None:
        store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-user":
            password = _read_password(args.password)
            if password is None:
                return 1
            return create_user(store, args.email.strip(), args.name.strip(), Role(args.role), password, args.verified)

        service = _build_service(store)
        if args.command == "verify-email":
            result = service.mark_verified(args.email.strip())
        else:
            password = _read_password(args.password)
            if password is None:
                return 1
            result = service.set_password(args.email.strip(), password)
        print(f"  {result.message}")
        return 0
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        if owns_store:
            store.close()


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    raise SystemExit(run())


if __name__ == "__main__":
    main()
