from __future__ import annotations

import json
import os
import smtplib
import threading
import time
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Callable, Mapping, Optional, Protocol

import requests

from gdpr.core.config.models import EmailConfig
from gdpr.core.notify.templates import render


@dataclass(frozen=True)
class SendResult:
    ok: bool
    backend: str
    message_id: str = ""
    error: Optional[str] = None


class NotificationSender(Protocol):
    def send(self, to_address: str, template_id: str, fields: Mapping[str, str]) -> SendResult: ...


def _new_message_id() -> str:
    return uuid.uuid4().hex


class OutboxSender:
    """
    Offline delivery: rendered messages are appended to a JSONL outbox that a
    host mail agent (or an operator) drains.
    """

    backend = "outbox"

    def __init__(self, *, path: str, sender: str = "no-reply@localhost", logger=None):
        self.path = str(path)
        self.sender = sender
        self.logger = logger
        self._lock = threading.Lock()

    def send(self, to_address: str, template_id: str, fields: Mapping[str, str]) -> SendResult:
        mid = _new_message_id()
        try:
            msg = render(template_id, fields)
        except KeyError:
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=f"unknown template {template_id}")
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "message_id": mid,
            "from": self.sender,
            "to": str(to_address),
            "template_id": str(template_id),
            "subject": msg.subject,
            "body": msg.body,
        }
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with self._lock:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            if self.logger:
                self.logger.error(f"Outbox write failed: {e}")
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=str(e))
        return SendResult(ok=True, backend=self.backend, message_id=mid)


class SmtpSender:
    backend = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int = 25,
        sender: str = "no-reply@localhost",
        starttls: bool = False,
        username: str = "",
        password_provider: Optional[Callable[[], str]] = None,
        timeout_seconds: float = 10.0,
        logger=None,
    ):
        self.host = host
        self.port = int(port)
        self.sender = sender
        self.starttls = bool(starttls)
        self.username = username
        self.password_provider = password_provider
        self.timeout_seconds = float(timeout_seconds)
        self.logger = logger

    def send(self, to_address: str, template_id: str, fields: Mapping[str, str]) -> SendResult:
        mid = _new_message_id()
        try:
            rendered = render(template_id, fields)
        except KeyError:
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=f"unknown template {template_id}")
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = str(to_address)
        msg["Subject"] = rendered.subject
        msg["Message-ID"] = f"<{mid}@gdpr>"
        msg.set_content(rendered.body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    password = self.password_provider() if self.password_provider else ""
                    smtp.login(self.username, password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            if self.logger:
                self.logger.error(f"SMTP send to {self.host}:{self.port} failed: {e}")
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=str(e)[:200])
        return SendResult(ok=True, backend=self.backend, message_id=mid)


class HttpRelaySender:
    """
    Posts rendered messages as JSON to a mail relay endpoint.
    """

    backend = "http"

    def __init__(self, *, relay_url: str, sender: str = "no-reply@localhost", timeout_seconds: float = 10.0, session: Any = None, logger=None):
        if not relay_url:
            raise ValueError("relay_url required")
        self.relay_url = relay_url
        self.sender = sender
        self.timeout_seconds = float(timeout_seconds)
        self.session = session or requests.Session()
        self.logger = logger

    def send(self, to_address: str, template_id: str, fields: Mapping[str, str]) -> SendResult:
        mid = _new_message_id()
        try:
            rendered = render(template_id, fields)
        except KeyError:
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=f"unknown template {template_id}")
        body = {"message_id": mid, "from": self.sender, "to": str(to_address), "subject": rendered.subject, "text": rendered.body}
        try:
            r = self.session.post(self.relay_url, json=body, timeout=self.timeout_seconds)
            r.raise_for_status()
        except requests.RequestException as e:
            if self.logger:
                self.logger.error(f"Mail relay post failed: {e}")
            return SendResult(ok=False, backend=self.backend, message_id=mid, error=str(e)[:200])
        return SendResult(ok=True, backend=self.backend, message_id=mid)


def build_sender(cfg: EmailConfig, *, root_path: str = ".", logger=None, password_provider: Optional[Callable[[], str]] = None) -> NotificationSender:
    if cfg.backend == "smtp":
        return SmtpSender(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            sender=cfg.sender,
            starttls=cfg.smtp_starttls,
            username=cfg.smtp_username,
            password_provider=password_provider,
            timeout_seconds=cfg.timeout_seconds,
            logger=logger,
        )
    if cfg.backend == "http":
        return HttpRelaySender(relay_url=cfg.relay_url, sender=cfg.sender, timeout_seconds=cfg.timeout_seconds, logger=logger)
    path = cfg.outbox_path if os.path.isabs(cfg.outbox_path) else os.path.join(root_path, cfg.outbox_path)
    return OutboxSender(path=path, sender=cfg.sender, logger=logger)
