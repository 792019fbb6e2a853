from __future__ import annotations

import json
import re
import threading
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from gdpr.core.errors import NotFoundError
from gdpr.core.privacy.sanitize import esc_url_raw


_EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


class User(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    username: str
    email: str
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    nickname: str = ""
    bio: str = ""
    url: str = ""
    registered: str = ""
    roles: List[str] = Field(default_factory=list)
    # meta name -> stored values (a name may hold several)
    metadata: Dict[str, List[str]] = Field(default_factory=dict)


class IdentityLookup(Protocol):
    def find_user_by_email(self, email: str) -> Optional[User]: ...


class InMemoryIdentityLookup:
    def __init__(self, users: Optional[List[User]] = None):
        self._lock = threading.Lock()
        self._by_email: Dict[str, User] = {}
        for u in users or []:
            self.add(u)

    def add(self, user: User) -> None:
        with self._lock:
            self._by_email[user.email.strip().lower()] = user

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return self._by_email.get(str(email or "").strip().lower())


def sanitize_email(value: Any) -> str:
    """Trimmed address, or "" when it does not look like one."""
    v = str(value or "").strip()
    return v if _EMAIL_RE.match(v) else ""


def _decode_meta_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    s = value.strip()
    if not s or s[0] not in "[{":
        return value
    try:
        return json.loads(s)
    except ValueError:
        return value


class UserDataExporter:
    """
    Builds the data-access view an administrator sends back to a data subject.
    """

    def __init__(self, *, identities: IdentityLookup, audit: Any = None, logger=None):
        self.identities = identities
        self.audit = audit
        self.logger = logger

    def access_data(self, email: Any, *, trace_id: str = "access") -> Dict[str, Any]:
        addr = sanitize_email(email)
        if not addr:
            raise NotFoundError("No user with that email address.")
        user = self.identities.find_user_by_email(addr)
        if user is None:
            raise NotFoundError("No user with that email address.")

        profile = {
            "display_name": user.display_name,
            "username": user.username,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "nickname": user.nickname,
            "bio": user.bio,
            "url": esc_url_raw(user.url),
            "registered": user.registered,
            "roles": ", ".join(user.roles),
        }
        metadata = {k: [_decode_meta_value(v) for v in values] for k, values in user.metadata.items()}

        if self.audit is not None:
            self.audit.log(trace_id, "privacy.access_data", {"user_id": user.user_id})
        if self.logger:
            self.logger.info(f"Data access export built for user {user.user_id}.")
        return {"user_email": addr, "profile": profile, "metadata": metadata}
