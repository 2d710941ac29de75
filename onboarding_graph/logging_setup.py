"""
LOGGING CONFIGURATION
Console output for humans, JSON lines for machines. Records are stamped
with the session and graph currently being processed.
"""
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Optional


class SessionContext:
    """Thread-local session/graph context for log records."""
    _local = threading.local()

    @classmethod
    def set(cls, session_id: Optional[str] = None, graph_id: Optional[str] = None):
        cls._local.session_id = session_id
        cls._local.graph_id = graph_id

    @classmethod
    def get_session_id(cls) -> Optional[str]:
        return getattr(cls._local, "session_id", None)

    @classmethod
    def get_graph_id(cls) -> Optional[str]:
        return getattr(cls._local, "graph_id", None)

    @classmethod
    def clear(cls):
        cls._local.session_id = None
        cls._local.graph_id = None


class ContextFilter(logging.Filter):
    """Injects session context into log records."""

    def filter(self, record):
        if getattr(record, "session_id", None) is None:
            record.session_id = SessionContext.get_session_id()
        if getattr(record, "graph_id", None) is None:
            record.graph_id = SessionContext.get_graph_id()
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": getattr(record, "session_id", None),
            "graph_id": getattr(record, "graph_id", None),
            "node_id": getattr(record, "node_id", None),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        log_entry = {k: v for k, v in log_entry.items() if v is not None}
        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Colored console formatter with session prefix."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        session_id = getattr(record, "session_id", None)
        prefix = f"[{session_id[:8]}] " if session_id else ""
        return f"{color}[{record.levelname:7}]{self.RESET} [{record.name}] {prefix}{record.getMessage()}"


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = None, json_console: bool = False) -> Optional[str]:
    """
    Configure the `Onboarding` logger tree.

    Args:
        log_level: Console level (DEBUG, INFO, WARNING, ERROR)
        log_dir: If set, also write JSON lines to a timestamped file there
        json_console: Emit JSON on the console instead of colored text

    Returns:
        Path of the log file, or None
    """
    logger = logging.getLogger("Onboarding")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    console_handler.setFormatter(JSONFormatter() if json_console else ConsoleFormatter())
    console_handler.addFilter(ContextFilter())
    logger.addHandler(console_handler)

    log_file = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(log_dir, f"onboarding_{timestamp}.jsonl")
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(ContextFilter())
        logger.addHandler(file_handler)

    logger.info(f"Logging initialized at {log_level.upper()}" + (f", file: {log_file}" if log_file else ""))
    return log_file
