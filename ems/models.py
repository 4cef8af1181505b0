"""Typed records for the Firestore documents this service reads and writes.

Firestore documents are schemaless maps with camelCase keys. Every document
is converted here, once, with defaults for missing fields, so the rest of the
code works with checked attributes instead of ad hoc ``data.get(...)`` calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

logger = logging.getLogger(__name__)

COLLECTION_ADMIN = "admin"
COLLECTION_USERS = "users"
COLLECTION_EVENTS = "events"


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    GUARD = "guard"


class Status(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ONBOARDING = "onboarding"


def _parse_datetime(value: Any) -> datetime | None:
    # Firestore timestamps come back as DatetimeWithNanoseconds, a datetime subclass.
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _str_or(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


@dataclass(frozen=True)
class Identity:
    """An authenticated Firebase principal, independent of any profile document."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None
    photo_url: str | None = None
    sign_in_provider: str | None = None

    @property
    def is_federated(self) -> bool:
        return self.sign_in_provider not in (None, "password", "custom", "anonymous")

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Identity":
        firebase_claims = claims.get("firebase") or {}
        return cls(
            uid=claims.get("uid") or claims.get("user_id") or claims["sub"],
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            display_name=claims.get("name"),
            photo_url=claims.get("picture"),
            sign_in_provider=firebase_claims.get("sign_in_provider"),
        )


@dataclass
class UserProfile:
    uid: str
    full_name: str = "Unknown"
    email: str | None = None
    role: Role = Role.STUDENT
    department: str | None = None
    status: Status = Status.PENDING
    is_manager: bool = False
    approved_by: str = "Unknown"
    program: str = "BS"
    semester: str = "1"
    section: str = "A"
    sap_id: str = "N/A"
    profile_image: str = ""
    is_dark_mode: bool | None = None

    @classmethod
    def from_document(cls, uid: str, data: dict[str, Any]) -> "UserProfile":
        raw_role = data.get("role") or Role.STUDENT.value
        role = _parse_enum(Role, raw_role, Role.STUDENT)
        if role.value != raw_role:
            logger.warning(f"User {uid} has unknown role {raw_role!r}; treating as student")
        dark_mode = data.get("isDarkMode")
        manager = data.get("isManager")
        return cls(
            uid=uid,
            full_name=_str_or(data.get("fullName"), "Unknown"),
            email=data.get("email"),
            role=role,
            department=data.get("department"),
            status=_parse_enum(Status, data.get("status"), Status.PENDING),
            is_manager=manager if isinstance(manager, bool) else False,
            approved_by=_str_or(data.get("approvedBy"), "Unknown"),
            program=_str_or(data.get("program"), "BS"),
            semester=_str_or(data.get("semester"), "1"),
            section=_str_or(data.get("section"), "A"),
            sap_id=_str_or(data.get("sapId") or data.get("studentId"), "N/A"),
            profile_image=_str_or(data.get("profileImage"), ""),
            is_dark_mode=dark_mode if isinstance(dark_mode, bool) else None,
        )

    @classmethod
    def for_federated_signup(cls, identity: Identity) -> "UserProfile":
        """Profile for a first Google login; the user finishes it on the onboarding screen."""
        return cls(
            uid=identity.uid,
            full_name=identity.display_name or "Student",
            email=identity.email,
            role=Role.STUDENT,
            status=Status.ONBOARDING,
            profile_image=identity.photo_url or "",
        )

    def to_signup_document(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role.value,
            "status": self.status.value,
            "profileImage": self.profile_image,
        }


@dataclass
class AdminRecord:
    uid: str
    is_dark_mode: bool | None = None

    @classmethod
    def from_document(cls, uid: str, data: dict[str, Any]) -> "AdminRecord":
        dark_mode = data.get("isDarkMode")
        return cls(uid=uid, is_dark_mode=dark_mode if isinstance(dark_mode, bool) else None)


@dataclass
class Event:
    id: str
    date: datetime
    title: str = "No Title"
    registered_students: list[str] = field(default_factory=list)

    @property
    def registered_count(self) -> int:
        return len(self.registered_students)

    def is_open(self, now: datetime) -> bool:
        return self.date > now

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Event | None":
        date = _parse_datetime(data.get("date"))
        if date is None:
            logger.warning(f"Skipping event {doc_id}: missing or invalid date")
            return None
        registered = data.get("registeredStudents") or []
        if not isinstance(registered, list):
            registered = []
        return cls(
            id=doc_id,
            date=date,
            title=_str_or(data.get("title"), "No Title"),
            registered_students=[str(uid) for uid in registered],
        )

    @classmethod
    def from_documents(cls, documents: Iterable[Any]) -> list["Event"]:
        events = []
        for doc in documents:
            event = cls.from_document(doc.id, doc.data)
            if event is not None:
                events.append(event)
        return events
