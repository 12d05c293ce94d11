import os
import logging
import logging.config
import contextvars
from contextlib import contextmanager

try:
    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration
except ImportError:  # pragma: no cover - sentry optional
    sentry_sdk = None
    LoggingIntegration = None

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [room=%(room_id)s sender=%(sender)s]: %(message)s"

room_id_var = contextvars.ContextVar("room_id", default="-")
sender_var = contextvars.ContextVar("sender", default="-")


class ContextFilter(logging.Filter):
    """Copy the current room and sender onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.room_id = room_id_var.get()
        record.sender = sender_var.get()
        return True


def build_logging_config(log_level: str, log_dir: str) -> dict:
    """Return a ``dictConfig`` mapping; an empty *log_dir* means console only."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "filters": ["context"],
            "level": log_level,
        },
    }
    if log_dir:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filters": ["context"],
            "filename": os.path.join(log_dir, "unfurl.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
            "level": log_level,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "filters": {"context": {"()": ContextFilter}},
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": log_level},
        # nio logs every sync response at INFO
        "loggers": {"nio": {"level": "WARNING"}},
    }


def setup_logging() -> None:
    """Configure console and optional rotating file logging, plus Sentry when a DSN is set."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR", "logs")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_level, log_dir))

    dsn = os.getenv("SENTRY_DSN")
    if dsn and sentry_sdk:
        logging_integration = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
        sentry_sdk.init(dsn=dsn, integrations=[logging_integration])


@contextmanager
def logging_context(room_id=None, sender=None):
    """Tag log records emitted inside the block with a room and sender."""
    tokens = []
    if room_id is not None:
        tokens.append((room_id_var, room_id_var.set(room_id)))
    if sender is not None:
        tokens.append((sender_var, sender_var.set(sender)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
