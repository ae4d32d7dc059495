"""CLI entry point for Respawn Console."""

import argparse
import os
import shutil
import sys


def initialize_app_directory():
    """Create the application directory on first run."""
    from respawn_console.app.config import APP_HOME, ensure_directories

    ensure_directories()
    return APP_HOME


def main():
    """Main entry point for Respawn Console."""
    parser = argparse.ArgumentParser(
        prog="respawn-console",
        description="Respawn Console - keeps CLI coding agents working across turns",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8766,
        help="Port to run the server on (default: 8766)"
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level (every state transition)"
    )
    parser.add_argument(
        "--version", "-v",
        action="store_true",
        help="Show version and exit"
    )

    args = parser.parse_args()

    if args.version:
        from respawn_console import __version__
        print(f"Respawn Console v{__version__}")
        return 0

    from respawn_console.app.config import TMUX_BIN
    if shutil.which(TMUX_BIN) is None:
        print(f"  Warning: {TMUX_BIN} not found on PATH, sessions will be reported as unavailable")

    app_home = initialize_app_directory()

    if args.debug:
        os.environ["RESPAWN_CONSOLE_DEBUG"] = "1"

    print(f"""
  Respawn Console

  App data:  {app_home}
  Server:    http://{args.host}:{args.port}
  Hooks:     POST http://{args.host}:{args.port}/api/hook-event
    """)
    print("\n  Press Ctrl+C to stop the server.\n")

    # Start server
    import uvicorn
    uvicorn.run(
        "respawn_console.app.main:app",
        host=args.host,
        port=args.port,
        log_level="info",
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
