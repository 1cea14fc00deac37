#!/usr/bin/env python3
"""
Atlas -- operator command line.

Usage:
  python main.py create-user --email admin@atlas.com --name "Atlas Admin" --role SUPER_ADMIN
  python main.py create-user --email agent@atlas.com --name "Agent" --role SALES_AGENT \
      --branch-id 7f1c... --agent-number AG-104
  python main.py list-users
  python main.py roles

The password is prompted for (twice) and must satisfy the password policy.
Reads DATABASE_URL and BCRYPT_ROUNDS through core.config like the API does.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.errors import WeakPassword
from auth.models import User
from auth.permissions import PERMISSION_MATRIX, Role
from auth.service import check_password_policy
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings


def _prompt_password() -> str:
    """Prompt until the two entries match and pass the policy."""
    while True:
        first = getpass.getpass("  Password: ")
        second = getpass.getpass("  Confirm:  ")
        if first != second:
            print("  [!] Passwords do not match.")
            continue
        try:
            check_password_policy(first)
        except WeakPassword as exc:
            print(f"  [!] {exc.message}.")
            continue
        return first


def cmd_create_user(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        password = _prompt_password()
        user = User(
            email=args.email,
            name=args.name,
            role=args.role,
            password_hash=hash_password(password, rounds=settings.bcrypt_rounds),
            branch_id=args.branch_id,
            agent_number=args.agent_number,
            created_by="cli",
        )
        try:
            user_id = store.create_user(user)
        except IntegrityError:
            print(f"  [!] A user with email '{args.email}' already exists.")
            return 1
        print(f"  Created {args.role} {args.email.strip().lower()} (id {user_id})")
        return 0
    finally:
        store.close()


def cmd_list_users(args: argparse.Namespace) -> int:
    store = UserStore(get_settings().database_url)
    try:
        users = store.list_users()
    finally:
        store.close()
    if not users:
        print("  No users.")
        return 0
    for u in users:
        state = "active" if u.is_active else "inactive"
        print(f"  {u.email:<32} {u.role:<15} {state:<8} last login: {u.last_login_at or 'never'}")
    return 0


def cmd_roles(args: argparse.Namespace) -> int:
    for role in Role:
        perms = sorted(p.value for p in PERMISSION_MATRIX.permissions_for(role))
        print(f"  {role.value} ({len(perms)})")
        for p in perms:
            print(f"    - {p}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="atlas", description="Atlas account administration")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user account")
    create.add_argument("--email", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--role", required=True, choices=[r.value for r in Role])
    create.add_argument("--branch-id", default=None)
    create.add_argument("--agent-number", default=None)
    create.set_defaults(func=cmd_create_user)

    list_users = sub.add_parser("list-users", help="List user accounts")
    list_users.set_defaults(func=cmd_list_users)

    roles = sub.add_parser("roles", help="Print the role -> permission table")
    roles.set_defaults(func=cmd_roles)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
