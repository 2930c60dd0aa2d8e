#!/usr/bin/env python3
"""
Development user management CLI for Amora.

Profiles are owned by the profile service in production; this script only
seeds local databases with real and bot users and issues session tokens
for trying the API by hand.

Usage:
    python scripts/manage_users.py create alice
    python scripts/manage_users.py create luna --bot
    python scripts/manage_users.py list
    python scripts/manage_users.py token 1
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from loguru import logger
from sqlalchemy import select

from amora.core.security import create_session_token
from amora.database import User, UserType, async_session_maker, init_db


async def list_users(args):
    """List all users."""
    async with async_session_maker() as session:
        result = await session.execute(select(User).order_by(User.id))
        users = list(result.scalars().all())

    if not users:
        print("No users found.")
        return

    print(f"\n{'ID':<6} {'Username':<20} {'Type':<6} {'Active':<8} {'Likes':<7} {'Matches':<8} {'Rejects':<8}")
    print("-" * 70)
    for user in users:
        active_str = "Yes" if user.is_available else "No"
        print(
            f"{user.id:<6} {user.username:<20} {user.type:<6} {active_str:<8} "
            f"{user.total_likes:<7} {user.total_matches:<8} {user.total_rejects:<8}"
        )
    print(f"\nTotal: {len(users)} users")


async def create_user(args):
    """Create a new user."""
    async with async_session_maker() as session:
        user = User(
            username=args.username,
            type=UserType.BOT.value if args.bot else UserType.REAL.value,
            gender=args.gender,
            city=args.city,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)

    logger.info(f"Created {user.type} user {user.username} (id {user.id})")


async def set_active(args):
    """Activate or deactivate a user."""
    async with async_session_maker() as session:
        user = await session.get(User, args.user_id)
        if not user:
            print(f"Error: user {args.user_id} not found")
            sys.exit(1)
        user.is_active = args.active
        await session.commit()

    logger.info(f"User {args.user_id} is now {'active' if args.active else 'inactive'}")


async def issue_token(args):
    """Print an access token for a user."""
    print(create_session_token(args.user_id, expires_minutes=args.minutes))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Amora development user management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # List users
    list_parser = subparsers.add_parser("list", help="List all users")
    list_parser.set_defaults(func=list_users)

    # Create user
    create_parser = subparsers.add_parser("create", help="Create a new user")
    create_parser.add_argument("username", help="Username")
    create_parser.add_argument("--bot", action="store_true", help="Create a bot persona")
    create_parser.add_argument("--gender", default=None, help="Gender")
    create_parser.add_argument("--city", default=None, help="City")
    create_parser.set_defaults(func=create_user)

    # Activate/deactivate
    active_parser = subparsers.add_parser("set-active", help="Activate or deactivate a user")
    active_parser.add_argument("user_id", type=int, help="User id")
    active_parser.add_argument(
        "active",
        type=lambda x: x.lower() in ["true", "1", "yes"],
        help="Active status (true/false)",
    )
    active_parser.set_defaults(func=set_active)

    # Issue token
    token_parser = subparsers.add_parser("token", help="Issue an access token")
    token_parser.add_argument("user_id", type=int, help="User id")
    token_parser.add_argument("--minutes", type=int, default=60, help="Lifetime in minutes")
    token_parser.set_defaults(func=issue_token)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    Path("data").mkdir(parents=True, exist_ok=True)

    async def run():
        await init_db()
        await args.func(args)

    asyncio.run(run())


if __name__ == "__main__":
    main()
