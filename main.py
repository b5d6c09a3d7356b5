#!/usr/bin/env python3
"""
DevScripts -- operator command line.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 5000] [--reload]
  python main.py create-user alice --role admin
  python main.py create-user bob --password hunter22 --email bob@example.com
  python main.py seed --admin-password 'change-me-now'
  python main.py purge-sessions

Every command reads DATABASE_URL (and the other settings) from the
environment or .env, exactly like the API does.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.credentials import UsernameTakenError, register_user
from auth.models import Role
from auth.sessions import SessionManager, build_session_store
from auth.store import UserStore
from core.config import get_settings
from market.models import Script
from market.store import MarketStore

SAMPLE_SCRIPTS = [
    Script(
        title="Infinite Jump",
        description="Jump again while airborne. Toggle with the J key.",
        code='game:GetService("UserInputService").JumpRequest:Connect(function()\n'
        '    game.Players.LocalPlayer.Character:FindFirstChildOfClass("Humanoid")'
        ':ChangeState("Jumping")\nend)',
        image_url="https://placehold.co/600x400?text=Infinite+Jump",
        game_type="Universal",
        featured_rank=1,
    ),
    Script(
        title="Auto Farm",
        description="Collects coins along the obby route automatically.",
        code="-- walks the coin path every 5 seconds\nwhile task.wait(5) do end",
        image_url="https://placehold.co/600x400?text=Auto+Farm",
        game_type="Obby",
        game_link="https://www.roblox.com/games/0/example-obby",
        featured_rank=2,
    ),
    Script(
        title="Speed Toggle",
        description="Sets WalkSpeed to 50 and back with the Q key.",
        code="local humanoid = game.Players.LocalPlayer.Character.Humanoid\nhumanoid.WalkSpeed = 50",
        image_url="https://placehold.co/600x400?text=Speed+Toggle",
        game_type="Universal",
    ),
]


def _read_password(provided: Optional[str]) -> str:
    if provided:
        return provided
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match.")
    return first


def create_user(
    user_store: UserStore,
    username: str,
    password: str,
    role: Role = Role.user,
    email: Optional[str] = None,
) -> int:
    """Create an account from the command line. Returns the new user id."""
    min_length = get_settings().min_password_length
    if len(password) < min_length:
        raise SystemExit(f"Password must be at least {min_length} characters.")
    try:
        user = register_user(user_store, username, password, email=email, role=role)
    except UsernameTakenError as exc:
        raise SystemExit(str(exc)) from None
    return user.id


def seed(user_store: UserStore, market_store: MarketStore, admin_password: Optional[str]) -> dict[str, int]:
    """Create an admin account and sample scripts if the database has none.

    Safe to run repeatedly: each half is skipped when data already exists.
    Returns how many users and scripts were added.
    """
    added = {"users": 0, "scripts": 0}
    admin_id = None
    if user_store.count_admins() == 0:
        if not admin_password:
            raise SystemExit("No admin exists yet: pass --admin-password to create one.")
        admin_id = create_user(user_store, "admin", admin_password, role=Role.admin)
        added["users"] = 1
    if not market_store.list_scripts(include_unapproved=True):
        for sample in SAMPLE_SCRIPTS:
            market_store.create_script(
                Script(
                    title=sample.title,
                    description=sample.description,
                    code=sample.code,
                    image_url=sample.image_url,
                    game_type=sample.game_type,
                    game_link=sample.game_link,
                    featured_rank=sample.featured_rank,
                    user_id=admin_id,
                )
            )
            added["scripts"] += 1
    return added


def purge_sessions() -> int:
    """Remove expired sessions from the configured session store."""
    settings = get_settings()
    manager = SessionManager(
        build_session_store(settings),
        secret_key=settings.secret_key,
        max_age_seconds=settings.session_max_age_seconds,
    )
    try:
        return manager.purge_expired()
    finally:
        manager.close()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="devscripts",
        description="DevScripts operator commands.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve_p = sub.add_parser("serve", help="Run the API with uvicorn.")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=5000)
    serve_p.add_argument("--reload", action="store_true", help="Reload on code changes (development).")

    user_p = sub.add_parser("create-user", help="Create an account.")
    user_p.add_argument("username")
    user_p.add_argument("--password", help="Prompted for when omitted.")
    user_p.add_argument("--email")
    user_p.add_argument("--role", choices=[r.value for r in Role], default=Role.user.value)

    seed_p = sub.add_parser("seed", help="Create the first admin and sample scripts.")
    seed_p.add_argument("--admin-password", help="Password for the 'admin' account, if one must be created.")

    sub.add_parser("purge-sessions", help="Delete expired sessions now.")

    args = parser.parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
        return

    if args.command == "purge-sessions":
        print(f"Purged {purge_sessions()} expired session(s).")
        return

    user_store = UserStore()
    try:
        if args.command == "create-user":
            user_id = create_user(user_store, args.username, _read_password(args.password), Role(args.role), args.email)
            print(f"Created {args.role} '{args.username}' (id={user_id}).")
        elif args.command == "seed":
            market_store = MarketStore()
            try:
                added = seed(user_store, market_store, args.admin_password)
            finally:
                market_store.close()
            print(f"Seeded {added['users']} user(s) and {added['scripts']} script(s).")
    finally:
        user_store.close()


if __name__ == "__main__":
    sys.exit(main())
