from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from gdpr.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class GdprError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


class ValidationError(GdprError):
    """Missing/malformed required input. Raised before any mutation."""

    def __init__(self, user_message: str = "One or more required fields are missing.", *, missing: Optional[List[str]] = None, **ctx: Any):
        self.missing: List[str] = list(missing or [])
        if self.missing:
            ctx.setdefault("missing", list(self.missing))
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class NotFoundError(GdprError):
    def __init__(self, user_message: str = "Nothing found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.INFO, recoverable=True, context=ctx)


class TransientIOError(GdprError):
    def __init__(self, user_message: str = "Storage or scheduler is unavailable.", **ctx: Any):
        super().__init__("transient_io", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class InvalidKeyError(GdprError):
    def __init__(self, user_message: str = "The confirmation key is not valid.", **ctx: Any):
        super().__init__("invalid_key", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ConfigError(GdprError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


HTTP_STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 400,
    "invalid_key": 403,
    "not_found": 404,
    "transient_io": 503,
}


def http_status_for(err: GdprError) -> int:
    return int(HTTP_STATUS_BY_CODE.get(err.code, 500))
