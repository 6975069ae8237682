"""CLI entry point: lucyn <command>

Usage:
    lucyn serve                 # Run the API server
    lucyn init-db               # Create the SQLite schema
    lucyn gen-key               # Print a fresh TOKEN_ENCRYPTION_KEY
    lucyn demo                  # Seed demo data and print a session token
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure the backend directory is on the path (for imports when run as module)
sys.path.insert(0, str(Path(__file__).parent))

import database as db
from config import settings


def _progress(msg: str) -> None:
    """Print a progress message to stderr (keeps stdout clean for output)."""
    print(f"\033[90m  → {msg}\033[0m", file=sys.stderr)


def _error(msg: str) -> None:
    print(f"\033[31m  ✗ {msg}\033[0m", file=sys.stderr)


def _success(msg: str) -> None:
    print(f"\033[32m  ✓ {msg}\033[0m", file=sys.stderr)


async def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    config = uvicorn.Config("main:app", host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())
    await uvicorn.Server(config).serve()
    return 0


async def _init_db(args: argparse.Namespace) -> int:
    await db.init_db()
    _success(f"Database ready at {db.DB_PATH}")
    return 0


async def _gen_key(args: argparse.Namespace) -> int:
    from encryption import generate_encryption_key

    key = generate_encryption_key()
    _progress("Add this to your .env:")
    print(f"TOKEN_ENCRYPTION_KEY={key}")
    return 0


async def _demo(args: argparse.Namespace) -> int:
    from demo_data import seed_demo_data
    from sessions import create_session_token

    await db.init_db()
    user = await seed_demo_data()
    _success(f"Demo organization ready (user: {user['email']})")
    _progress("Send this as the session_token cookie or an Authorization: Bearer header:")
    print(create_session_token(user))
    return 0


COMMANDS = {
    "serve": _serve,
    "init-db": _init_db,
    "gen-key": _gen_key,
    "demo": _demo,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lucyn", description="Lucyn backend")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=settings.HOST)
    serve.add_argument("--port", type=int, default=settings.PORT)

    sub.add_parser("init-db", help="Create the database schema")
    sub.add_parser("gen-key", help="Generate a token encryption key")
    sub.add_parser("demo", help="Seed demo data and print a session token")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return await COMMANDS[args.command](args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        _error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
