"""
NextGen entry point.

Parses arguments, prepares the data directory and logging, then serves the API (``--mode api``) or
serves it from a background thread while the interactive streaming shell runs (``--mode cli``).
"""

import argparse
import logging
import os
import sys
import threading
from pathlib import Path

from nextgen.api.app import run_api
from nextgen.config import settings

logger = logging.getLogger(__name__)

_QUIET_LOGGERS = ("httpx", "chromadb", "sentence_transformers")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _ensure_data_dir(path: Path) -> None:
    """Create *path* if needed and exit when it is not writable."""
    path.mkdir(parents=True, exist_ok=True)
    if not os.access(path, os.W_OK):
        logger.error("Data directory is not writable: %s", path)
        sys.exit(1)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the NextGen chat backend")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Serve the REST API, or the API plus the interactive shell (default: api)",
    )
    parser.add_argument("--host", default="0.0.0.0", help="API bind address (default: %(default)s)")
    parser.add_argument(
        "--port", type=int, default=settings.API_PORT, help="API port (default: %(default)s)"
    )
    parser.add_argument(
        "--model",
        default=settings.DEFAULT_MODEL,
        help="Model id used by the shell (default from env: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """Console-script entry point."""
    args = _build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    settings.LOG_LEVEL = args.log_level
    _init_logging(settings.LOG_LEVEL)
    _ensure_data_dir(Path(settings.DATA_DIR))

    logger.info("Starting NextGen [%s mode] with default model %s", args.mode, args.model)

    if args.mode == "api":
        run_api(host=args.host, port=args.port, reload=settings.DEBUG)
        return

    # uvicorn's reloader needs the main thread, so the background server runs without it
    threading.Thread(
        target=run_api,
        kwargs={"host": args.host, "port": args.port, "reload": False, "log_level": "warning"},
        daemon=True,
    ).start()

    from nextgen.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    run_cli(model_id=args.model, base_url=f"http://localhost:{args.port}")


if __name__ == "__main__":
    main()
