#!/usr/bin/env python3
"""
Vulnerability Management Platform -- command line entry point.

Usage:
  python main.py serve                       # uvicorn api.main:app on 127.0.0.1:8000
  python main.py serve --host 0.0.0.0 --port 3001 --reload
  python main.py seed                        # demo teams, users, apps, reports, findings
  python main.py seed --reset                # wipe seeded collections first
  python main.py create-user --email a@b.com --name "Ann" --role Admin
  python main.py create-user --email d@b.com --name "Dev" --role Dev --team-id <id> --team-id <id>

Environment variables (see core/config.py for the full list):
  DATABASE_URL         SQLAlchemy URL of the document store (default: SQLite file)
  SECRET_KEY           Access-token signing key (required unless DEBUG=true)
  REFRESH_SECRET_KEY   Refresh-token signing key (required unless DEBUG=true)
  SEED_USER_PASSWORD   Password given to every seeded user (default: password123)
"""

import argparse
import getpass
import logging
import sys

from core.config import get_settings
from core.errors import TrackerError
from core.models import ROLES

logger = logging.getLogger("vmp.cli")


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_seed(args: argparse.Namespace) -> int:
    from core.documents import DocumentStore
    from tracker.seed import seed_demo_data

    settings = get_settings()
    documents = DocumentStore(settings.database_url)
    try:
        counts = seed_demo_data(documents, settings.seed_user_password, reset=args.reset)
    except TrackerError as e:
        print(f"  [!] Seeding failed: {e.message}. Use --reset to start from an empty store.")
        return 1
    finally:
        documents.close()
    for name, count in counts.items():
        print(f"  {name:<16} {count}")
    print("  Seeded users sign in with SEED_USER_PASSWORD (default: password123).")
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    from auth.models import User
    from auth.store import UserStore
    from auth.tokens import hash_password
    from core.documents import DocumentStore

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    documents = DocumentStore(get_settings().database_url)
    try:
        user = User(
            email=args.email,
            name=args.name,
            role=args.role,
            team_ids=args.team_id or [],
            password_hash=hash_password(password),
        )
        UserStore(documents).create_user(user)
    except TrackerError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        documents.close()
    print(f"  Created {user.role} user {user.email} (id {user.id})")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vmp",
        description="Vulnerability Management Platform",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the REST API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    seed = sub.add_parser("seed", help="Load demo data")
    seed.add_argument("--reset", action="store_true", help="Delete existing seeded collections first")
    seed.set_defaults(func=_cmd_seed)

    create_user = sub.add_parser("create-user", help="Create a user account")
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--name", required=True)
    create_user.add_argument("--role", choices=ROLES, default="Dev")
    create_user.add_argument("--password", help="Prompted for when omitted")
    create_user.add_argument("--team-id", action="append", help="Team membership; repeat for several teams")
    create_user.set_defaults(func=_cmd_create_user)

    args = parser.parse_args()
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
