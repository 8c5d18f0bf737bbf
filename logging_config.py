"""
Logging setup for the CollabHub backend.

Every record carries the request id, the acting user and, for realtime
traffic, the websocket connection id, so one chat message can be followed
from the socket frame through the store write to the notification push.
"""

import logging
import logging.handlers
import json
import os
from datetime import datetime, timezone
from contextvars import ContextVar

# Filled by RequestLifecycleMiddleware for HTTP and by the gateway for websockets
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="-")


def _context() -> dict:
    return {
        "request_id": request_id_var.get("-"),
        "user_id": user_id_var.get("-"),
        "connection_id": connection_id_var.get("-"),
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for production consoles and the log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            **_context(),
            "message": record.getMessage(),
        }
        # logger.info("msg", extra={"data": {...}})
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ctx = _context()
        # Only show the connection id for realtime traffic
        tags = f"req={ctx['request_id']} user={ctx['user_id']}"
        if ctx["connection_id"] != "-":
            tags += f" conn={ctx['connection_id']}"

        line = f"{color}{record.levelname:<7}{self.RESET} {record.name} [{tags}] {record.getMessage()}"
        data = getattr(record, "data", None)
        if data:
            line += f"  | data={data}"
        if record.exc_info and record.exc_info[0] is not None:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def _file_handler(log_file: str) -> logging.Handler:
    os.makedirs(os.path.dirname(log_file), exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging():
    env = os.getenv("ENV", "development").lower()
    default_level = {"development": "DEBUG", "testing": "WARNING"}.get(env, "INFO")
    log_level = os.getenv("LOG_LEVEL", default_level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Avoids duplicate handlers on uvicorn reload
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter() if env == "production" else DevFormatter())
    root_logger.addHandler(console_handler)

    log_file = None
    if env != "testing":
        log_file = os.getenv("LOG_FILE", os.path.join(os.path.dirname(__file__), "logs", "app.log"))
        root_logger.addHandler(_file_handler(log_file))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("motor").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    logging.getLogger("collabhub").info(f"Logging initialized | env={env} level={log_level} file={log_file or '-'}")


def get_logger(name: str) -> logging.Logger:
    """Named logger under the collabhub namespace, e.g. get_logger("gateway")."""
    return logging.getLogger(f"collabhub.{name}")
