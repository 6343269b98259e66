#!/usr/bin/env python3
"""Create or promote an admin account.

Self-service signup never grants the admin role, so the first admin has to
be created out of band with this script. The account is created already
confirmed and can log in immediately.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --password SecurePassword123! --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(email: str, password: str, name: str = "Admin", dry_run: bool = False) -> dict:
    """Create a confirmed admin account or promote an existing one.

    Returns:
        dict with account_id, email, and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from tourauth.service.runtime import get_runtime
    from tourauth.storage.models import Role

    runtime = get_runtime()
    existing = runtime.store.get_account_by_email(email, include_inactive=True)

    if existing:
        if existing.role == Role.ADMIN and existing.active and existing.email_confirmed:
            print(f"Account {email} already exists as admin (id: {existing.id})")
            return {"account_id": existing.id, "email": existing.email, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing account {email} to admin")
            return {"account_id": existing.id, "email": existing.email, "status": "dry_run"}

        runtime.store.update_account(
            existing.id,
            role=Role.ADMIN,
            active=True,
            email_confirmed=True,
            confirm_token_hash=None,
            confirm_token_expires_at=None,
        )
        print(f"Promoted existing account {email} to admin (id: {existing.id})")
        return {"account_id": existing.id, "email": existing.email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin account: {email}")
        return {"account_id": None, "email": email, "status": "dry_run"}

    account = runtime.store.create_account(
        name=name,
        email=email,
        password_hash=runtime.hasher.hash(password),
        role=Role.ADMIN,
        email_confirmed=True,
    )
    print(f"Created admin account: {email} (id: {account.id})")
    return {
        "account_id": account.id,
        "email": account.email,
        "status": "created",
        "access_token": runtime.codec.issue(account.id),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account",
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
    parser.add_argument("--name", default="Admin", help="Display name for a new account")
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

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/tourauth-bootstrap"

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_admin(args.email, args.password, args.name, args.dry_run)

        if result["status"] == "created":
            print("\nAdmin account created successfully!")
            print(f"  Email: {result['email']}")
            print(f"  Account ID: {result['account_id']}")
            if result.get("access_token"):
                print(f"  Access Token: {result['access_token'][:50]}...")
        elif result["status"] == "promoted":
            print("\nExisting account promoted to admin!")
        elif result["status"] == "already_admin":
            print("\nNo changes needed - account is already an admin.")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
