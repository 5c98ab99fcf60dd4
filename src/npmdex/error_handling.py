"""
Error types and centralized error handling for npmdex.

Defines the exception hierarchy raised by the core and the handler that logs
failures npmdex degrades around instead of raising.
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse


class NpmDexError(Exception):
    """Base class for all npmdex errors."""


class ManifestNotFound(NpmDexError):
    """No package.json exists at the expected project root."""


class ManifestInvalid(NpmDexError):
    """The manifest exists but cannot be parsed."""


class RegistryUnavailable(NpmDexError):
    """The registry could not be reached or answered with a non-2xx status."""


class RegistryTimeout(RegistryUnavailable):
    """A registry request exceeded its timeout."""


class PackageNotFound(NpmDexError):
    """The registry reports that the package does not exist."""


class MalformedResponse(NpmDexError):
    """An external response is missing required fields or is not valid JSON."""


class AuditUnavailable(NpmDexError):
    """The audit report could not be obtained or parsed."""


class DependencyTreeUnavailable(NpmDexError):
    """The installed dependency tree could not be obtained."""


class CommandFailed(NpmDexError):
    """An external command could not be started."""


class CommandTimeout(NpmDexError):
    """An external command exceeded its timeout."""


class MutationInProgress(NpmDexError):
    """Another install/update/uninstall/audit-fix is still running."""


class MutationFailed(NpmDexError):
    """A mutating package-manager operation failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ErrorCategory(Enum):
    """Where a handled failure came from."""

    MANIFEST = "manifest"
    REGISTRY = "registry"
    AUDIT = "audit"
    ANALYSIS = "analysis"
    PROCESS = "process"
    SESSION = "session"


_REDACTIONS = [
    (re.compile(r"(_authToken=)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Bearer\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\bnpm_[A-Za-z0-9]{8,}"), "[REDACTED]"),
    (re.compile(r"(token\s*[:=]\s*)[\"']?[^\s\"']{8,}", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(https?://[^/@\s:]+:)[^@\s]+@"), r"\1[REDACTED]@"),
]
_SECRET_KEYS = ("token", "password", "secret", "auth")


def redact(text: str) -> str:
    """Remove npm tokens and URL credentials from ``text``."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def redact_details(details: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in details.items():
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            cleaned[key] = "[REDACTED]"
        elif isinstance(value, dict):
            cleaned[key] = redact_details(value)
        elif isinstance(value, str):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


@dataclass(frozen=True)
class ErrorReport:
    """A failure npmdex handled instead of raising."""

    category: ErrorCategory
    message: str
    source: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception_type: Optional[str] = None

    def render(self) -> str:
        parts = [f"[{self.category.value}] {self.message} ({self.source})"]
        if self.exception_type:
            parts.append(f"exception={self.exception_type}")
        parts.extend(f"{key}={value}" for key, value in self.details.items())
        return " ".join(parts)


class ErrorHandler:
    """
    Logs degraded operations: skipped manifest entries, failed lookups,
    unavailable audits and trees, failed npm invocations.

    Messages and details are redacted before they reach the log unless
    masking is switched off in configuration.
    """

    def __init__(
        self,
        logger_name: str = "npmdex",
        log_level: int = logging.WARNING,
        mask_sensitive_data: bool = True,
    ):
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            self.logger.addHandler(handler)
        self.mask_sensitive_data = mask_sensitive_data

    def report(
        self,
        level: int,
        category: ErrorCategory,
        message: str,
        source: str,
        exception: Optional[BaseException] = None,
        **details: Any,
    ) -> ErrorReport:
        if exception is not None:
            details.setdefault("error", str(exception))
        if self.mask_sensitive_data:
            message = redact(message)
            details = redact_details(details)

        report = ErrorReport(
            category=category,
            message=message,
            source=source,
            details=details,
            exception_type=type(exception).__name__ if exception is not None else None,
        )
        self.logger.log(level, report.render())
        return report

    def warning(self, category: ErrorCategory, message: str, source: str, **kwargs: Any) -> ErrorReport:
        return self.report(logging.WARNING, category, message, source, **kwargs)

    def error(self, category: ErrorCategory, message: str, source: str, **kwargs: Any) -> ErrorReport:
        return self.report(logging.ERROR, category, message, source, **kwargs)


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(log_level: int = logging.WARNING, mask_sensitive_data: bool = True) -> ErrorHandler:
    """Replace the process-wide handler, e.g. after the CLI has read its config."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(log_level=log_level, mask_sensitive_data=mask_sensitive_data)
    return _global_error_handler


def log_parsing_error(
    message: str,
    source: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> None:
    details: Dict[str, Any] = {}
    if file_path is not None:
        details["file"] = Path(file_path).name
    get_error_handler().warning(ErrorCategory.MANIFEST, message, source, exception=exception, **details)


def log_network_error(
    message: str,
    source: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
) -> None:
    """Log a registry failure; only scheme, host and path of ``url`` are kept."""
    details: Dict[str, Any] = {}
    if url is not None:
        parsed = urlparse(url)
        host = parsed.hostname or ""
        if parsed.port:
            host = f"{host}:{parsed.port}"
        details["url"] = f"{parsed.scheme}://{host}{parsed.path}"
    if status_code is not None:
        details["status_code"] = status_code
    get_error_handler().error(ErrorCategory.REGISTRY, message, source, exception=exception, **details)


def log_process_error(
    message: str,
    command: str,
    returncode: Optional[int] = None,
    exception: Optional[Exception] = None,
) -> None:
    details: Dict[str, Any] = {"command": command}
    if returncode is not None:
        details["returncode"] = returncode
    get_error_handler().error(ErrorCategory.PROCESS, message, "process.run", exception=exception, **details)
