#!/usr/bin/env python3
"""
Shelfnote -- personal book tracking.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 3000 --reload
  python main.py create-user ann --name "Ann"

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to shelfnote.db in the project root.
"""

import argparse
import getpass
import sys

from auth.errors import DuplicateUsernameError, ProviderError
from auth.models import Authenticated
from auth.store import IdentityStore
from auth.strategies import register_local
from library.store import LibraryStore


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _create_user(args: argparse.Namespace) -> int:
    """Create a local account from the terminal (prompts for the password)."""
    password = getpass.getpass("Password: ")
    if not password:
        print("  [!] Password must not be empty.")
        return 1
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1

    library = LibraryStore(args.database_url)
    try:
        outcome = register_local(IdentityStore(library), args.name or args.username, args.username, password)
    except DuplicateUsernameError:
        print(f"  [!] Username {args.username!r} is already taken.")
        return 1
    except ProviderError as exc:
        print(f"  [!] Could not create user: {exc}")
        return 1
    finally:
        library.close()

    if not isinstance(outcome, Authenticated):
        print(f"  [!] Could not create user: {outcome}")
        return 1
    print(f"Created user {outcome.user.username!r} (id={outcome.user.id}).")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="shelfnote",
        description="Personal book tracking web app.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-user ann --name "Ann"
  DATABASE_URL=sqlite:///books.db python main.py create-user bob
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the web server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3000, help="Port (default: 3000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve.set_defaults(func=_serve)

    create = sub.add_parser("create-user", help="Create a local account")
    create.add_argument("username", help="Login name (matched exactly, case-sensitive)")
    create.add_argument("--name", default="", help="Display name (default: the username)")
    create.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy URL to use instead of DATABASE_URL",
    )
    create.set_defaults(func=_create_user)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
