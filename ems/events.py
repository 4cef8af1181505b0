from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from .models import Event

WEEK = timedelta(days=7)


class MainFilter(str, Enum):
    ALL = "all"
    UPCOMING = "upcoming"
    PAST = "past"


class TimeFilter(str, Enum):
    ALL_TIME = "all_time"
    WEEK = "week"


def partition(events: Iterable[Event], now: datetime) -> tuple[list[Event], list[Event]]:
    """Split into (open, past); an event dated exactly ``now`` is past."""
    open_events: list[Event] = []
    past_events: list[Event] = []
    for event in events:
        if event.is_open(now):
            open_events.append(event)
        else:
            past_events.append(event)
    return open_events, past_events


def open_events(events: Iterable[Event], now: datetime) -> list[Event]:
    """Open events, soonest first."""
    upcoming, _ = partition(events, now)
    return sorted(upcoming, key=lambda e: e.date)


def apply_filters(
    events: Iterable[Event],
    main_filter: MainFilter,
    time_filter: TimeFilter,
    now: datetime,
) -> list[Event]:
    """Open events soonest first, then past events most recent first.

    ``TimeFilter.WEEK`` only narrows the open side. The result depends on the
    arguments alone.
    """
    upcoming, past = partition(events, now)
    if time_filter == TimeFilter.WEEK:
        cutoff = now + WEEK
        upcoming = [e for e in upcoming if e.date < cutoff]

    upcoming.sort(key=lambda e: e.date)
    past.sort(key=lambda e: e.date, reverse=True)

    if main_filter == MainFilter.UPCOMING:
        return upcoming
    if main_filter == MainFilter.PAST:
        return past
    return upcoming + past
