"""
Structured logging configuration for npmdex.

Emits one JSON object per event so registry, audit, analysis and mutation
activity can be followed and filtered by machines as well as people.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger for one npmdex component."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"npmdex.{name}")
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_context(self, **context: Any) -> None:
        """Attach fields to every subsequent event."""
        self.context = {k: v for k, v in context.items() if v is not None}

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


_registry_logger = StructuredLogger("registry")
_audit_logger = StructuredLogger("audit")
_analysis_logger = StructuredLogger("analysis")
_mutation_logger = StructuredLogger("mutation")
_session_logger = StructuredLogger("session")

_ALL_LOGGERS = [
    _registry_logger,
    _audit_logger,
    _analysis_logger,
    _mutation_logger,
    _session_logger,
]


def get_registry_logger() -> StructuredLogger:
    """Get registry operations logger."""
    return _registry_logger


def get_audit_logger() -> StructuredLogger:
    """Get audit operations logger."""
    return _audit_logger


def get_analysis_logger() -> StructuredLogger:
    """Get graph and license analysis logger."""
    return _analysis_logger


def get_session_logger() -> StructuredLogger:
    """Get session and refresh logger."""
    return _session_logger


def log_registry_fetch(
    package_name: str,
    operation: str,
    success: bool,
    response_time_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """Log the outcome of one registry request."""
    log_data: Dict[str, Any] = {
        "package_name": package_name,
        "operation": operation,
        "success": success,
    }
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms
    if error:
        log_data["error"] = error

    if success:
        _registry_logger.debug("registry_fetch_completed", **log_data)
    else:
        _registry_logger.warning("registry_fetch_failed", **log_data)


def log_audit_complete(advisory_count: int, exit_code: int) -> None:
    """Log a finished npm audit run."""
    _audit_logger.info(
        "audit_completed", advisory_count=advisory_count, exit_code=exit_code
    )


def log_mutation(action: str, package_name: Optional[str], success: bool, **kwargs) -> None:
    """Log a finished mutation."""
    log_data = {"action": action, "package_name": package_name, "success": success, **kwargs}
    if success:
        _mutation_logger.info("mutation_completed", **log_data)
    else:
        _mutation_logger.error("mutation_failed", **log_data)


def log_analysis(analysis: str, package_name: str, result_count: int, **kwargs) -> None:
    """Log a finished impact or conflict analysis."""
    _analysis_logger.info(
        "analysis_completed",
        analysis=analysis,
        package_name=package_name,
        result_count=result_count,
        **kwargs,
    )


def set_project_context(project_root: Optional[str] = None) -> None:
    """Attach the project root to events from every component."""
    for logger in _ALL_LOGGERS:
        logger.set_context(project_root=project_root)


def clear_project_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
