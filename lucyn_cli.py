"""Console script for `lucyn`, installed by pip.

The backend is a directory of flat modules rather than a package, so this
shim puts it on sys.path and runs its __main__ with the command line args.

Usage:
    lucyn serve [--host HOST] [--port PORT]
    lucyn init-db
    lucyn gen-key
    lucyn demo
"""

import asyncio
import importlib.util
import os
import sys
from pathlib import Path
from types import ModuleType

BACKEND_DIR = Path(__file__).parent / "lucyn" / "backend"


def _load_backend_cli() -> ModuleType:
    sys.path.insert(0, str(BACKEND_DIR))
    # .env and the default SQLite path are resolved relative to the backend
    os.chdir(BACKEND_DIR)

    spec = importlib.util.spec_from_file_location("lucyn_backend_cli", str(BACKEND_DIR / "__main__.py"))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load backend CLI from {BACKEND_DIR}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def main() -> None:
    cli = _load_backend_cli()
    sys.exit(asyncio.run(cli.main(sys.argv[1:])))


if __name__ == "__main__":
    main()
