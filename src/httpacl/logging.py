"""Logging configuration and decision event logging."""

import json
import logging
import os
from datetime import datetime, timezone

# Configuration from environment
LOG_FILE = os.environ.get("HTTPACL_LOG_FILE", "/tmp/httpacl.log")
DECISIONS_FILE = os.environ.get("HTTPACL_DECISIONS_FILE", "/tmp/httpacl-decisions.jsonl")
VERBOSE = os.environ.get("VERBOSE", "0") == "1"

LOGGER_NAME = "httpacl"

# Module-level state (initialized by init_logging)
logger: logging.Logger = logging.getLogger(LOGGER_NAME)
_decisions_file = None


def init_logging() -> logging.Logger:
    """Initialize logging. Returns the main logger.

    Library code only logs through the "httpacl" logger; nothing is written
    anywhere until an application calls this.
    """
    global logger, _decisions_file

    # Operational logger (human-readable)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if VERBOSE else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()
    handler = logging.FileHandler(LOG_FILE)
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(handler)

    # Decision events file (JSONL format, line-buffered)
    close_logging()
    _decisions_file = open(DECISIONS_FILE, "a", buffering=1)

    # aiohttp client internals are only interesting when debugging hooks
    if VERBOSE:
        aiohttp_logger = logging.getLogger("aiohttp.client")
        aiohttp_logger.setLevel(logging.DEBUG)
        aiohttp_logger.addHandler(handler)

    return logger


def close_logging():
    """Close logging resources."""
    global _decisions_file
    if _decisions_file:
        _decisions_file.close()
        _decisions_file = None


def log_decision(**kwargs) -> None:
    """Log a verdict as JSONL (decisions breakdown at end for readability)."""
    if not _decisions_file:
        return
    decisions = kwargs.pop("decisions", None)
    event = {"ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds")}
    event.update(kwargs)
    if decisions is not None:
        event["decisions"] = decisions
    _decisions_file.write(json.dumps(event, separators=(",", ":")) + "\n")
