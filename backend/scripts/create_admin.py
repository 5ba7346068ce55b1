#!/usr/bin/env python3
"""
Create an admin account, or promote an existing user to admin.

Registration through the API always creates regular users, so the first
admin has to be created here.

Usage:
    python scripts/create_admin.py <email> [--name "Admin"] [--password <password>]

Without --password or ADMIN_PASSWORD the script prompts for one.
"""

import argparse
import asyncio
import getpass
import os
import sys
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.database import AsyncSessionLocal, engine
from app.crud import user as user_crud
from app.models.user import Role
from app.schemas.user import UserCreate


async def create_admin(email: str, name: str, password: str | None) -> int:
    """Create or promote the admin account."""
    async with AsyncSessionLocal() as session:
        try:
            user = await user_crud.get_user_by_email(session, email)
            if user is not None:
                if user.is_admin:
                    print(f"✅ {email} is already an admin (ID: {user.id})")
                    return 0
                user.role = Role.ADMIN
                await session.commit()
                print(f"✅ Promoted {email} to admin (ID: {user.id})")
                return 0

            if await user_crud.email_taken(session, email):
                print(f"❌ {email} belongs to a deleted account and cannot be reused")
                return 1

            password = password or getpass.getpass("Password: ")
            user = await user_crud.create_user(
                session,
                UserCreate(name=name, email=email, password=password),
                role=Role.ADMIN,
            )
            print(f"✅ Created admin {email} (ID: {user.id})")
            return 0

        except ValueError as e:
            # Pydantic validation of email or password
            print(f"❌ ERROR: {e}")
            await session.rollback()
            return 1

        finally:
            await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create or promote a UserGate admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("email", help="Admin email")
    parser.add_argument("--name", default="Admin", help="Display name for a new admin")
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Password for a new admin (or set ADMIN_PASSWORD, otherwise prompted)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(create_admin(email=args.email, name=args.name, password=args.password))


if __name__ == "__main__":
    sys.exit(main())
