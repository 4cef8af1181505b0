from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .config import Settings
from .db import Document, Subscription
from .errors import StoreError
from .events import MainFilter, TimeFilter, apply_filters
from .lifecycle import CancellationToken
from .models import COLLECTION_EVENTS, COLLECTION_USERS, Event, Identity, Role, Status, UserProfile
from .notices import Notice, Severity
from .schemas import (
    AdminProfileOut,
    ConsoleView,
    EventCard,
    EventListResponse,
    StudentCard,
    TickerOut,
)
from .ticker import TickerController

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AdminProfile:
    uid: str
    name: str = "Admin"
    department: str | None = None
    is_super_admin: bool = False

    @classmethod
    def from_document(cls, uid: str, data: dict[str, Any] | None, settings: Settings) -> "AdminProfile":
        data = data or {}
        department = data.get("department")
        # Super admins get the department control room.
        is_super_admin = (department or "").strip() in settings.super_admin_departments
        return cls(
            uid=uid,
            name=data.get("fullName") or "Admin",
            department=department,
            is_super_admin=is_super_admin,
        )

    def to_schema(self) -> AdminProfileOut:
        return AdminProfileOut(
            uid=self.uid,
            name=self.name,
            department=self.department,
            is_super_admin=self.is_super_admin,
        )

    def student_filters(self) -> dict[str, Any]:
        return {
            "role": Role.STUDENT.value,
            "department": self.department,
            "status": Status.APPROVED.value,
        }


def load_admin_profile(store, identity: Identity, settings: Settings) -> AdminProfile:
    return AdminProfile.from_document(identity.uid, store.get(COLLECTION_USERS, identity.uid), settings)


def event_card(event: Event, now: datetime) -> EventCard:
    return EventCard(
        id=event.id,
        title=event.title,
        date=event.date,
        registered_count=event.registered_count,
        is_past=not event.is_open(now),
    )


def student_card(profile: UserProfile) -> StudentCard:
    return StudentCard(
        uid=profile.uid,
        full_name=profile.full_name,
        program=profile.program,
        semester=profile.semester,
        section=profile.section,
        sap_id=profile.sap_id,
        is_manager=profile.is_manager,
        approved_by=profile.approved_by,
    )


def students_from_documents(documents: list[Document]) -> list[UserProfile]:
    return [UserProfile.from_document(doc.id, doc.data) for doc in documents]


def list_events(
    store,
    main_filter: MainFilter,
    time_filter: TimeFilter,
    now: datetime | None = None,
) -> EventListResponse:
    now = now or utcnow()
    events = Event.from_documents(store.query(COLLECTION_EVENTS))
    return EventListResponse(
        main_filter=main_filter,
        time_filter=time_filter,
        total_events=len(events),
        events=[event_card(e, now) for e in apply_filters(events, main_filter, time_filter, now)],
    )


def list_students(store, profile: AdminProfile) -> list[StudentCard]:
    documents = store.query(COLLECTION_USERS, profile.student_filters())
    return [student_card(p) for p in students_from_documents(documents)]


def toggle_manager(store, uid: str, current_status: bool, name: str | None = None) -> Notice:
    """Flip ``isManager`` on ``users/{uid}``.

    Nothing is cached locally; the new flag shows up with the next students
    snapshot.
    """
    name = name or "Student"
    try:
        store.update(COLLECTION_USERS, uid, {"isManager": not current_status})
    except StoreError as e:
        logger.warning(f"Manager toggle for {uid} failed: {e.message}")
        return Notice(f"Error: {e.message}", Severity.ERROR)

    logger.info(f"Set isManager={not current_status} on {uid}")
    if current_status:
        return Notice(f"{name} removed from Manager.", Severity.WARNING)
    return Notice(f"{name} promoted to Manager!", Severity.SUCCESS)


class AdminConsole:
    """Live admin view over the events and students collections.

    Lives on one event loop for as long as a console connection is open.
    Snapshots arriving from Firestore threads are handed to the loop; every
    change to what the admin sees calls ``on_change``. ``close`` ends the
    lifetime: watches are unsubscribed, the ticker stops, and callbacks still
    in flight are dropped.
    """

    def __init__(
        self,
        profile: AdminProfile,
        settings: Settings,
        on_change: Callable[[], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.profile = profile
        self.main_filter = MainFilter.ALL
        self.time_filter = TimeFilter.ALL_TIME
        self.events: list[Event] = []
        self.students: list[UserProfile] = []
        self.token = CancellationToken()
        self.ticker = TickerController(
            interval=settings.ticker_interval_seconds,
            on_tick=self._changed,
            token=self.token,
        )
        self._on_change = on_change
        self._clock = clock
        self._subscriptions: list[Subscription] = []

    def start(self, store) -> None:
        loop = asyncio.get_running_loop()

        def on_events(documents: list[Document]) -> None:
            if self.token.cancelled:
                return
            events = Event.from_documents(documents)
            loop.call_soon_threadsafe(self.on_events, events)

        def on_students(documents: list[Document]) -> None:
            if self.token.cancelled:
                return
            students = students_from_documents(documents)
            loop.call_soon_threadsafe(self.on_students, students)

        self._subscriptions.append(store.listen(COLLECTION_EVENTS, None, on_events))
        self._subscriptions.append(
            store.listen(COLLECTION_USERS, self.profile.student_filters(), on_students)
        )
        logger.info(f"Admin console opened for {self.profile.uid}")

    def on_events(self, events: list[Event]) -> None:
        if self.token.cancelled:
            return
        self.events = events
        self.ticker.update(events, self._clock())
        self._changed()

    def on_students(self, students: list[UserProfile]) -> None:
        if self.token.cancelled:
            return
        self.students = students
        self._changed()

    def set_filters(
        self,
        main_filter: MainFilter | None = None,
        time_filter: TimeFilter | None = None,
    ) -> None:
        if main_filter is not None:
            self.main_filter = main_filter
        if time_filter is not None:
            self.time_filter = time_filter
        self._changed()

    def _changed(self) -> None:
        if self.token.cancelled or self._on_change is None:
            return
        self._on_change()

    def view(self) -> ConsoleView:
        now = self._clock()
        current = self.ticker.current
        ticker = TickerOut(
            index=self.ticker.index,
            total=len(self.ticker.events),
            event_id=current.id if current else None,
            title=current.title if current else None,
            registered_count=current.registered_count if current else None,
        )

        filtered = apply_filters(self.events, self.main_filter, self.time_filter, now)
        return ConsoleView(
            admin=self.profile.to_schema(),
            main_filter=self.main_filter,
            time_filter=self.time_filter,
            total_events=len(self.events),
            ticker=ticker,
            events=[event_card(e, now) for e in filtered],
            students=[student_card(s) for s in self.students],
        )

    def close(self) -> None:
        if self.token.cancelled:
            return
        self.token.cancel()
        self.ticker.dispose()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        logger.info(f"Admin console closed for {self.profile.uid}")
