from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Chatty SDK loggers that drown out pipeline lines at DEBUG
_QUIET_LOGGERS = ("botocore", "aiobotocore", "urllib3", "pdfminer")


def setup_logging(level: str = "INFO", *, force: bool = False) -> None:
    """
    Configure the root logger once per process.

    Lambda runtimes install their own root handler before user code runs;
    in that case only the level is adjusted unless force=True.
    """
    root = logging.getLogger()
    numeric = getattr(logging, level.upper(), logging.INFO)

    if root.handlers and not force:
        root.setLevel(numeric)
    else:
        logging.basicConfig(level=numeric, format=LOG_FORMAT, force=force)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
