from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RequestTab(BaseModel):
    name: str
    count: int


class RequestListResponse(BaseModel):
    badge: Optional[int] = None
    tabs: Dict[str, RequestTab]
    requests: Dict[str, Dict[str, Dict[str, Any]]]


class SettingValue(BaseModel):
    value: Any = None


class SettingResponse(BaseModel):
    name: str
    value: Any = None


class BreachInitiateRequest(BaseModel):
    # presence is checked by the workflow so missing fields map to validation_error
    content: Optional[str] = Field(default=None, max_length=20000)
    nature: Optional[str] = Field(default=None, max_length=20000)
    office_contact: Optional[str] = Field(default=None, max_length=20000)
    consequences: Optional[str] = Field(default=None, max_length=20000)
    measures: Optional[str] = Field(default=None, max_length=20000)
    requester: str = Field(default="", max_length=200)
    referer_path: str = Field(default="", max_length=500)


class BreachInitiateResponse(BaseModel):
    state: str
    email_sent: bool
    expires_at: Optional[float] = None


class BreachStatusResponse(BaseModel):
    state: str
    requester: str = ""
    initiated_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    expires_at: Optional[float] = None


class AccessDataRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)


class AccessDataResponse(BaseModel):
    user_email: str
    profile: Dict[str, Any]
    metadata: Dict[str, List[Any]]
