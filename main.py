"""Threadline dev launcher. Starts the API server, or checks a script."""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def check_script(path: Path) -> int:
    """Compile a script and print its diagnostics. Returns the exit code."""
    from threadline import ScriptError, compile_script

    try:
        result = compile_script(path.read_bytes())
    except (OSError, ScriptError) as e:
        print(f"{path}: {e}", file=sys.stderr)
        return 2

    program = result.program
    print(f"{program.metadata.title}: {len(program.contacts)} contacts, "
          f"{sum(len(c.rounds) for c in program.contacts.values())} rounds")
    for diagnostic in result.errors + result.warnings:
        level = "error" if diagnostic in result.errors else "warning"
        where = f":{diagnostic.line}" if diagnostic.line else ""
        print(f"{path}{where}: {level} [{diagnostic.kind}] {diagnostic.message}")
    return 1 if result.errors else 0


def main():
    parser = argparse.ArgumentParser(description="Threadline dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--port", default=PORT, help=f"Port to listen on (default: {PORT})")
    parser.add_argument("--check", type=Path, metavar="FILE",
                        help="Compile a script, print diagnostics and exit")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.check:
        sys.exit(check_script(args.check))

    # The app factory reads DATA_DIR, including under the reloader
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    import uvicorn

    print(f"Starting backend on http://localhost:{args.port} ...")
    uvicorn.run(
        "backend.app:create_app",
        factory=True,
        host=HOST,
        port=int(args.port),
        reload=not args.no_reload,
    )


if __name__ == "__main__":
    main()
