"""Logging configuration for the Rejoinder API and CLI."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a console handler on the ``rejoinder`` logger tree.

    The level comes from ``level``, then ``LOG_LEVEL``, then INFO. Calling it
    again only updates the level.
    """
    global _configured

    resolved = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger("rejoinder")
    root.setLevel(getattr(logging, resolved, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root.addHandler(handler)

    # The SDK logs request bodies at DEBUG
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pdfminer").setLevel(logging.WARNING)

    _configured = True


def get_request_logger() -> logging.Logger:
    return logging.getLogger("rejoinder.api.requests")


def get_audit_logger() -> logging.Logger:
    """Logger for security-relevant events (rejected payloads, rate limits)."""
    return logging.getLogger("rejoinder.api.audit")


def get_performance_logger() -> logging.Logger:
    return logging.getLogger("rejoinder.api.performance")
