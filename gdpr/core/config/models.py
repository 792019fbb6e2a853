from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DAY_SECONDS = 86400
HOUR_SECONDS = 3600


class EmailConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="outbox", pattern="^(outbox|smtp|http)$")
    sender: str = Field(default="no-reply@localhost", max_length=200)
    outbox_path: str = "runtime/outbox.jsonl"
    smtp_host: str = "localhost"
    smtp_port: int = Field(default=25, ge=1, le=65535)
    smtp_starttls: bool = False
    smtp_username: str = ""
    relay_url: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class GdprConfigFile(BaseModel):
    """
    config/gdpr.json schema.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    admin_email: str = Field(default="admin@localhost", min_length=3, max_length=200)
    site_url: str = Field(default="http://localhost", max_length=500)
    breach_expiry_seconds: int = Field(default=2 * DAY_SECONDS, ge=60)
    telemetry_purge_interval_seconds: int = Field(default=12 * HOUR_SECONDS, ge=60)
    telemetry_record_type: str = Field(default="telemetry", min_length=1, max_length=40)
    options_dir: str = "runtime/options"
    records_db_path: str = "runtime/records.sqlite"
    audit_log_path: str = "logs/audit.jsonl"
    breach_fail_on_send_error: bool = False
    email: EmailConfig = Field(default_factory=EmailConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    @field_validator("admin_email")
    @classmethod
    def _looks_like_email(cls, v: str) -> str:
        v = str(v or "").strip()
        if "@" not in v:
            raise ValueError("admin_email must be an email address")
        return v

    @field_validator("site_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return str(v or "").strip().rstrip("/")


def default_gdpr_config_dict() -> Dict[str, Any]:
    return GdprConfigFile().model_dump()
