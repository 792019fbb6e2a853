from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class RequestType(str, Enum):
    """
    Data-subject request kinds. Values are the persisted tags.
    """

    RECTIFY = "rectify"
    COMPLAINT = "complaint"
    ERASURE = "delete"

    @property
    def display_name(self) -> str:
        return _REQUEST_TYPE_NAMES[self]


_REQUEST_TYPE_NAMES: Dict[RequestType, str] = {
    RequestType.RECTIFY: "Rectify Data",
    RequestType.COMPLAINT: "Complaint",
    RequestType.ERASURE: "Erasure",
}


class DataSubjectRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: RequestType
    confirmed: bool = False
    email: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    requested_at: Optional[str] = None


class HostEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    cookies_used: str = Field(min_length=1)
    optout: str = ""


class ConsentTab(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    always_active: bool = False
    how_we_use: str = Field(min_length=1)
    cookies_used: str = ""
    hosts: List[HostEntry] = Field(default_factory=list)


class BreachState(str, Enum):
    IDLE = "IDLE"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"


BREACH_TEXT_FIELDS = ("content", "nature", "office_contact", "consequences", "measures")


class BreachNotification(BaseModel):
    """
    The single in-flight breach notification. `key` is the one-time
    confirmation token embedded in the confirmation link.
    """

    model_config = ConfigDict(extra="ignore")

    key: str = Field(min_length=20)
    content: str
    nature: str
    office_contact: str
    consequences: str
    measures: str
    requester: str = ""
    initiated_at: str = Field(default_factory=_iso_now)
    confirmed: bool = False
    confirmed_at: Optional[str] = None
