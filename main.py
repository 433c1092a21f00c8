#!/usr/bin/env python3
"""
DevGuild Access -- operator CLI.

Bootstrap and maintenance tasks that must work before anyone can log in
(there is no admin to call the API yet on a fresh install).

Usage:
  python main.py seed-roles
  python main.py list-roles
  python main.py create-user --email admin@example.com --name "Site Admin" --role super_admin
  python main.py assign-role --email ada@example.com --role mentor

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the store (default: sqlite:///devguild_access.db)
  JWT_SECRET     Required unless DEBUG=true (settings are validated on start)
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import ExperienceLevel, Principal
from auth.roles import DEFAULT_ROLES, RoleCatalog
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from core.config import get_settings


def _open_store(db_url: Optional[str]) -> UserStore:
    return UserStore(db_url or get_settings().database_url)


def cmd_seed_roles(store: UserStore, args: argparse.Namespace) -> int:
    created = store.seed_roles(DEFAULT_ROLES)
    print(f"  {created} role(s) created, {len(DEFAULT_ROLES) - created} already present.")
    return 0


def cmd_list_roles(store: UserStore, args: argparse.Namespace) -> int:
    catalog = RoleCatalog.default()
    roles = store.list_roles()
    if not roles:
        print("  No roles. Run: python main.py seed-roles")
        return 0
    for role in roles:
        flags = []
        if catalog.has_mentor_capability(role.name):
            flags.append("mentor")
        if catalog.has_admin_capability(role.name):
            flags.append("admin")
        print(f"  {role.name:<16} level {catalog.level_of(role.name)}  {','.join(flags) or '-'}")
    return 0


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    role_name = args.role or RoleCatalog.default().suggested_role(args.experience)
    role = store.get_role_by_name(role_name)
    if role is None:
        print(f"  [!] Role '{role_name}' does not exist. Run: python main.py seed-roles")
        return 1

    password = args.password
    if password is None:
        password = getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1

    principal = Principal(
        email=args.email,
        full_name=args.name,
        hashed_password=hash_password(password),
        role_id=role.id,
        experience_level=args.experience,
    )
    try:
        user_id = store.create_user(principal)
    except IntegrityError:
        print(f"  [!] User with email '{args.email}' already exists.")
        return 1
    print(f"  Created {args.email.lower()} ({role.name}) id={user_id}")
    return 0


def cmd_assign_role(store: UserStore, args: argparse.Namespace) -> int:
    principal = store.get_by_email(args.email)
    if principal is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    role = store.get_role_by_name(args.role)
    if role is None:
        print(f"  [!] Role '{args.role}' does not exist.")
        return 1
    store.update_role(principal.id, role.id)
    print(f"  {principal.email} is now {role.name}")
    return 0


_COMMANDS = {
    "seed-roles": cmd_seed_roles,
    "list-roles": cmd_list_roles,
    "create-user": cmd_create_user,
    "assign-role": cmd_assign_role,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="devguild-access",
        description="Bootstrap and maintain the DevGuild Access user store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-roles
  python main.py create-user --email admin@example.com --name "Site Admin" --role super_admin
  python main.py create-user --email ada@example.com --name Ada --experience senior
  DATABASE_URL=sqlite:///prod.db python main.py list-roles
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("seed-roles", help="Create the default roles that do not exist yet")
    sub.add_parser("list-roles", help="Show roles with their level and capabilities")

    create = sub.add_parser("create-user", help="Create a user with a password")
    create.add_argument("--email", required=True)
    create.add_argument("--name", required=True, help="Full name")
    create.add_argument("--role", default=None, help="Role name (default: suggested from --experience)")
    create.add_argument(
        "--experience",
        choices=[level.value for level in ExperienceLevel],
        default=None,
        help="Experience level",
    )
    create.add_argument("--password", default=None, help="Password (prompted when omitted)")

    assign = sub.add_parser("assign-role", help="Change the role of an existing user")
    assign.add_argument("--email", required=True)
    assign.add_argument("--role", required=True)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    store = _open_store(args.db_url)
    try:
        return _COMMANDS[args.command](store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
