#!/usr/bin/env python3
"""Bootstrap an admin user for deployments without an interactive terminal.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=admin ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! \
        DATABASE_URL=postgresql://localhost/todos python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username admin --email admin@example.com --password ...

Environment Variables:
    ADMIN_USERNAME: Username for the admin user
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (generated and printed if unset)
    DATABASE_URL: PostgreSQL connection string (required)
"""
from __future__ import annotations

import argparse
import os
import sys

from todos.cli import CommandError, create_superuser, generate_password


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for todos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username (or set ADMIN_USERNAME env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    args = parser.parse_args()

    if not args.username or not args.email:
        print("Error: --username/ADMIN_USERNAME and --email/ADMIN_EMAIL are required")
        return 1

    if not os.environ.get("DATABASE_URL"):
        print("Error: DATABASE_URL must point at the postgres database")
        return 1

    generated = not args.password
    password = args.password or generate_password()

    try:
        user_id = create_superuser(args.username, args.email, password)
    except CommandError as exc:
        print(f"Error: {exc}")
        return 1

    print(f"Created admin user: {args.username} (id: {user_id})")
    if generated:
        print(f"  Password: {password}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
