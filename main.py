#!/usr/bin/env python3
"""
Taskboard admin CLI -- manage accounts directly against the database.

The HTTP API only lets an administrator create other administrators, so the
first one has to come from here.

Usage:
  python main.py create-user --email ada@example.com --name "Ada" --role administrator
  python main.py list-users
  python main.py set-role ada@example.com leader

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the store (default: sqlite:///taskboard.db)
  SECRET_KEY    Required unless DEBUG=true (read by the shared settings)
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.store import UserStore, normalize_email
from core.config import get_settings
from core.database import Database

_MIN_PASSWORD = 6
_MAX_PASSWORD = 72


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from the flag, or prompt twice for it."""
    if given is not None:
        return given
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _create_user(store: UserStore, args: argparse.Namespace) -> int:
    from auth.tokens import hash_password

    password = _read_password(args.password)
    if password is None:
        return 1
    if not _MIN_PASSWORD <= len(password) <= _MAX_PASSWORD:
        print(f"  [!] Password must be {_MIN_PASSWORD}-{_MAX_PASSWORD} characters.")
        return 1

    user = User(
        email=normalize_email(args.email),
        name=args.name or args.email.split("@")[0],
        role=Role(args.role),
        hashed_password=hash_password(password),
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    print(f"  Created {user.role.value} '{user.email}' (id={user_id}).")
    return 0


def _list_users(store: UserStore, args: argparse.Namespace) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'ROLE':<13}  {'EMAIL':<32}  NAME")
    for u in users:
        print(f"  {u.id:>4}  {u.role.value:<13}  {u.email:<32}  {u.name}")
    return 0


def _set_role(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    new_role = Role(args.role)
    if user.role is Role.ADMINISTRATOR and new_role is not Role.ADMINISTRATOR and store.count_admins() <= 1:
        print("  [!] Refusing to demote the last administrator.")
        return 1
    store.update_user(user.id, role=new_role)
    print(f"  {user.email}: {user.role.value} -> {new_role.value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskboard",
        description="Taskboard account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email ada@example.com --role administrator
  python main.py list-users
  python main.py set-role bob@example.com developer
  DATABASE_URL=sqlite:///prod.db python main.py list-users
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Override DATABASE_URL for this invocation",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = commands.add_parser("create-user", help="Create an account")
    create.add_argument("--email", required=True)
    create.add_argument("--name", default="")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.DEVELOPER.value,
        help="Global role (default: developer)",
    )
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted when omitted; avoid passing it on shared machines)",
    )
    create.set_defaults(handler=_create_user)

    listing = commands.add_parser("list-users", help="List all accounts")
    listing.set_defaults(handler=_list_users)

    set_role = commands.add_parser("set-role", help="Change the global role of an account")
    set_role.add_argument("email")
    set_role.add_argument("role", choices=[r.value for r in Role])
    set_role.set_defaults(handler=_set_role)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    db = Database(args.database_url or settings.database_url, settings.database_timeout_seconds)
    db.connect()
    try:
        return args.handler(UserStore(db), args)
    finally:
        db.disconnect()


if __name__ == "__main__":
    sys.exit(main())
