#!/usr/bin/env python3
"""
Inkwell auth -- administrative command line.

Usage:
  python main.py create-user --username alice --email alice@example.com --name "Alice"
  python main.py create-user --username root --email root@example.com --name Root --role admin
  python main.py purge-tokens

Reads the same environment / .env settings as the API (SECRET_KEY,
DATABASE_URL, BCRYPT_ROUNDS, ...), so accounts created here can log in
through the API straight away.

Exit codes: 0 on success, 1 when the operation is refused (bad input,
username/email taken, missing configuration). The reason goes to stderr.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from api.models import RegisterRequest
from auth.errors import AuthError
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.refresh_store import RefreshTokenStore
from auth.service import AuthService
from auth.store import UserStore
from auth.token_service import TokenService
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

logger = logging.getLogger("inkwell.cli")


def _build_service(settings: Settings) -> AuthService:
    users = UserStore(db_url=settings.database_url, timeout_seconds=settings.store_timeout_seconds)
    refresh_store = RefreshTokenStore(
        settings.database_url,
        secret_key=settings.secret_key,
        ttl_seconds=settings.refresh_token_ttl_seconds,
        timeout_seconds=settings.store_timeout_seconds,
    )
    codec = TokenCodec(settings.secret_key, ttl_seconds=settings.access_token_ttl_seconds)
    tokens = TokenService(codec, refresh_store, users)
    return AuthService(users, PasswordHasher(rounds=settings.bcrypt_rounds), tokens)


def _close(service: AuthService) -> None:
    service.tokens.refresh_store.close()
    service.users.close()


def _prompt_password() -> str:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        raise AuthError("Passwords do not match.")
    return password


def _create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _prompt_password()
    # Same validation rules as POST /api/v1/auth/register.
    try:
        request = RegisterRequest(
            username=args.username,
            email=args.email,
            password=password,
            name=args.name,
            role=args.role,
        )
    except PydanticValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(p) for p in err["loc"])
            print(f"  [!] {field}: {err['msg']}" if field else f"  [!] {err['msg']}", file=sys.stderr)
        return 1

    user = service.register(request.username, request.email, request.password, name=request.name, role=request.role)
    print(f"Created {user.role.value} '{user.username}' <{user.email}> (id={user.id}).")
    return 0


def _purge_tokens(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.tokens.purge_expired()
    print(f"Purged {removed} expired refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inkwell-auth",
        description="Administrative commands for the Inkwell auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --username alice --email alice@example.com --name Alice
  python main.py create-user --username root --email root@example.com --name Root --role admin
  python main.py purge-tokens
        """,
    )
    subcommands = parser.add_subparsers(dest="command", metavar="COMMAND")
    subcommands.required = True

    create = subcommands.add_parser("create-user", help="Create an account (prompts for the password)")
    create.add_argument("--username", required=True, help="3-50 letters or digits")
    create.add_argument("--email", required=True, help="Unique email address")
    create.add_argument("--name", default=None, help="Display name (defaults to the username)")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.author.value,
        help="Account role (default: author)",
    )
    create.add_argument(
        "--password",
        default=None,
        help="Password. Omit to be prompted -- values on the command line end up in shell history.",
    )
    create.set_defaults(handler=_create_user)

    purge = subcommands.add_parser("purge-tokens", help="Delete expired refresh tokens")
    purge.set_defaults(handler=_purge_tokens)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    try:
        settings = get_settings()
    except PydanticValidationError as exc:
        for err in exc.errors():
            print(f"  [!] Configuration error: {err['msg']}", file=sys.stderr)
        return 1

    service = _build_service(settings)
    try:
        return args.handler(service, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        _close(service)


if __name__ == "__main__":
    sys.exit(main())
