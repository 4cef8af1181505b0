from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from .events import MainFilter, TimeFilter
from .notices import Severity


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class GoogleLoginRequest(BaseModel):
    id_token: str | None = None  # None means the user backed out of the Google prompt
    access_token: str | None = None


class NoticeOut(BaseModel):
    message: str
    severity: Severity


class PreferencesOut(BaseModel):
    dark_mode: bool | None = None


class ResolutionResponse(BaseModel):
    state: str
    outcome: str  # navigate | sign_out
    route: str | None = None
    uid: str
    email: str | None = None
    role: str | None = None
    preferences: PreferencesOut
    notice: NoticeOut


class TokensOut(BaseModel):
    id_token: str
    refresh_token: str
    expires_in: int


class LoginResponse(BaseModel):
    resolution: ResolutionResponse
    tokens: TokensOut | None = None


class AdminProfileOut(BaseModel):
    uid: str
    name: str
    department: str | None = None
    is_super_admin: bool


class EventCard(BaseModel):
    id: str
    title: str
    date: datetime
    registered_count: int
    is_past: bool


class EventListResponse(BaseModel):
    main_filter: MainFilter
    time_filter: TimeFilter
    total_events: int
    events: list[EventCard]


class StudentCard(BaseModel):
    uid: str
    full_name: str
    program: str
    semester: str
    section: str
    sap_id: str
    is_manager: bool
    approved_by: str


class TickerOut(BaseModel):
    index: int
    total: int
    event_id: str | None = None
    title: str | None = None
    registered_count: int | None = None


class ConsoleView(BaseModel):
    admin: AdminProfileOut
    main_filter: MainFilter
    time_filter: TimeFilter
    total_events: int
    ticker: TickerOut
    events: list[EventCard]
    students: list[StudentCard]


class ManagerToggleRequest(BaseModel):
    is_manager: bool  # the flag as currently shown; the update writes its negation
    name: str | None = None


class ConsoleAction(BaseModel):
    action: Literal["set_filters", "toggle_manager"]
    main_filter: MainFilter | None = None
    time_filter: TimeFilter | None = None
    uid: str | None = None
    is_manager: bool | None = None
    name: str | None = None
