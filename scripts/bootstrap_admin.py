#!/usr/bin/env python3
"""Create or promote an administrator account.

Self-registration only yields ``user`` accounts, so the first admin (and any
super admin) is provisioned from the command line. The account is created
already verified.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='S3cure!pass' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --password 'S3cure!pass' --role super_admin

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (12+ chars, 3 character classes)
    ADMIN_NAME: Display name (default "Administrator")
    DATABASE_URL: PostgreSQL connection string (a persisted memory store is used if unset)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ELEVATED_ROLES = ("admin", "super_admin")


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(
    runtime,
    email: str,
    password: str,
    *,
    name: str = "Administrator",
    role: str = "admin",
    dry_run: bool = False,
) -> dict:
    """Create or promote ``email`` to ``role``.

    Returns:
        dict with user_id, email, and status
        ('created', 'promoted', 'unchanged' or 'dry_run')
    """
    from gatehouse.storage.models import Role, UserStatus

    target_role = Role(role)
    email = email.strip().lower()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if existing.role == target_role and existing.is_active:
            print(f"User {email} already has role {target_role.value} (id: {existing.id})")
            return {"user_id": existing.id, "email": email, "status": "unchanged"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to {target_role.value}")
            return {"user_id": existing.id, "email": email, "status": "dry_run"}
        runtime.store.update_user_role(existing.id, target_role)
        runtime.store.set_user_status(existing.id, UserStatus.ACTIVE)
        print(f"Promoted existing user {email} to {target_role.value} (id: {existing.id})")
        return {"user_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create {target_role.value} user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    digest = runtime.passwords.hash(password)
    user = runtime.store.create_user(email, name, digest, role=target_role)
    runtime.store.set_user_status(user.id, UserStatus.ACTIVE)
    print(f"Created {target_role.value} user: {email} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for Gatehouse",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
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
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME", "Administrator"),
        help="Display name for a newly created account",
    )
    parser.add_argument("--role", choices=ELEVATED_ROLES, default="admin")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("MEMORY_STORE_PERSIST", "true")
        print("Note: Using persisted in-memory store (set DATABASE_URL for Postgres)")

    from gatehouse.service.runtime import get_runtime

    try:
        runtime = get_runtime()
        result = bootstrap_admin(
            runtime,
            args.email,
            args.password,
            name=args.name,
            role=args.role,
            dry_run=args.dry_run,
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted!")
    elif result["status"] == "unchanged":
        print("\nNo changes needed.")


if __name__ == "__main__":
    main()
