"""Logging setup for the command line entry point."""

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(verbose: bool = False, log_file: str | Path | None = None) -> None:
    """Configure console (and optional file) logging once per process.

    Args:
        verbose: Log DEBUG messages (engine progress, command output)
        log_file: Also write every record to this file
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Avoid duplicate handlers if called more than once
    if getattr(root, "_image_sync_configured", False):
        return

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    # aiohttp access/client chatter is not useful at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    setattr(root, "_image_sync_configured", True)
