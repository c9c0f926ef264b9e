#!/usr/bin/env python3
"""Create the first admin account, or promote an existing user to admin.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Secure-Pass123!' python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_NAME: Display name (defaults to "Admin")
    ADMIN_PASSWORD: Password; one is generated and printed once when omitted
    DATABASE_URL: PostgreSQL connection string (memory store when unset)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import string
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def generate_password(length: int = 20) -> str:
    """Random password that satisfies the complexity policy."""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*-_"
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if (
            any(c.islower() for c in candidate)
            and any(c.isupper() for c in candidate)
            and any(c.isdigit() for c in candidate)
            and any(c in "!@#$%^&*-_" for c in candidate)
        ):
            return candidate


async def bootstrap_admin(
    email: str, name: str, password: str, dry_run: bool = False
) -> dict:
    """Create or promote an admin user.

    Returns:
        dict with user_id, email, and status
    """
    # imported late so env defaults set in main() are seen by Settings
    from credence.service.runtime import get_runtime
    from credence.storage.models import Role

    runtime = get_runtime()
    await asyncio.to_thread(runtime.prepare)
    try:
        existing = await runtime.users.get_user_by_email(email)
        if existing:
            if existing.role == Role.ADMIN:
                return {"user_id": existing.id, "email": email, "status": "already_admin"}
            if dry_run:
                return {"user_id": existing.id, "email": email, "status": "dry_run"}
            await runtime.users.update_user(existing.id, {"role": Role.ADMIN})
            return {"user_id": existing.id, "email": email, "status": "promoted"}

        if dry_run:
            return {"user_id": None, "email": email, "status": "dry_run"}

        user = await runtime.users.create_user(
            name=name,
            email=email,
            password=password,
            role=Role.ADMIN,
            is_email_verified=True,
        )
        return {"user_id": user.id, "email": email, "status": "created"}
    finally:
        await runtime.close()


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for Credence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME", "Admin"),
        help="Admin display name (or set ADMIN_NAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    from credence.api.schemas import _validate_email, _validate_password_strength

    try:
        email = _validate_email(args.email)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    generated = args.password is None
    password = args.password or generate_password()
    try:
        _validate_password_strength(password)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    result = asyncio.run(bootstrap_admin(email, args.name, password, args.dry_run))

    status = result["status"]
    if status == "created":
        print(f"Created admin user: {email} (id: {result['user_id']})")
        if generated:
            print(f"  Generated password (shown once): {password}")
    elif status == "promoted":
        print(f"Promoted existing user {email} to admin (id: {result['user_id']})")
    elif status == "already_admin":
        print(f"User {email} is already an admin (id: {result['user_id']})")
    else:
        print(f"[DRY RUN] No changes made for {email}")


if __name__ == "__main__":
    main()
