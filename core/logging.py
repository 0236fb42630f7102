# PATH: core/logging.py
"""
Structured logging for KEEPER.

All contextual fields are passed via extra={"context": {...}} or bound on a
ContextAdapter. JSON lines include:
- timestamp (ISO 8601)
- level
- logger
- message
- context (pool, borrower, prices, amounts, tx hash, ...)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Global context that gets added to all log entries
_global_context: dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-04T12:00:00.000+00:00",
        "level": "INFO",
        "logger": "keeper.decision",
        "message": "Kick candidate",
        "context": {"pool": "0x...", "borrower": "0x..."}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {}
        context.update(_global_context)

        if hasattr(record, "context") and record.context:
            context.update(record.context)

        if record.exc_info:
            context["exception"] = self.formatException(record.exc_info)

        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter for console output.
    """

    max_context_fields = 4

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"

        context = getattr(record, "context", None)
        if context:
            items = list(context.items())
            ctx_str = ", ".join(f"{k}={v}" for k, v in items[: self.max_context_fields])
            if len(items) > self.max_context_fields:
                ctx_str += f", ... (+{len(items) - self.max_context_fields} more)"
            base += f" | {ctx_str}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds context to all log entries.
    """

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        context = {**self.extra, **extra.get("context", {})}

        kwargs["extra"] = {"context": context}
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextAdapter":
        """Return a child adapter with additional default context."""
        return ContextAdapter(self.logger, {**self.extra, **context})


def set_global_context(**kwargs: Any) -> None:
    """
    Set global context that gets added to all log entries.

    Example:
        set_global_context(chain_id=1, signer="0xabc...")
    """
    _global_context.update(kwargs)


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger with optional default context.

    Args:
        name: Logger name (e.g., "keeper.settlement")
        **context: Default context for all log entries from this logger

    Example:
        logger = get_logger("keeper.take", pool="0x...")
        logger.info("ArbTake sent", extra={"context": {"borrower": "0x..."}})
    """
    return ContextAdapter(logging.getLogger(name), context)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON formatting (recommended for production)
        log_file: Optional file path; file output is always JSON
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def log_action(
    logger: logging.LoggerAdapter,
    action_type: str,
    status: str,
    pool: str,
    borrower: Optional[str] = None,
    tx_hash: Optional[str] = None,
    level: int = logging.INFO,
    **extra: Any,
) -> None:
    """Log an action decision or outcome with standard context."""
    who = f" borrower={borrower}" if borrower else ""
    logger.log(
        level,
        f"{action_type} | {status} | pool={pool}{who}",
        extra={
            "context": {
                "action": action_type,
                "status": status,
                "pool": pool,
                "borrower": borrower,
                "tx_hash": tx_hash,
                **extra,
            }
        },
    )
