import asyncio
from datetime import timedelta

import pytest

from ems.console import (
    AdminConsole,
    AdminProfile,
    list_events,
    list_students,
    load_admin_profile,
    toggle_manager,
)
from ems.events import MainFilter, TimeFilter
from ems.models import Identity
from ems.notices import Severity


def _seed_students(store):
    store.seed("users", "s1", {"fullName": "Ali", "role": "student", "department": "CS", "status": "approved"})
    store.seed("users", "s2", {"fullName": "Sara", "role": "student", "department": "CS", "status": "pending"})
    store.seed("users", "s3", {"fullName": "Omar", "role": "student", "department": "EE", "status": "approved"})


def _seed_events(store, now):
    store.seed("events", "open1", {"title": "Hackathon", "date": now + timedelta(days=2), "registeredStudents": ["s1"]})
    store.seed("events", "open2", {"title": "Seminar", "date": now + timedelta(days=1)})
    store.seed("events", "past1", {"title": "Orientation", "date": now - timedelta(days=3)})


class TestToggleManager:
    def test_promote_and_demote_messages(self, store):
        store.seed("users", "s1", {"isManager": False})

        promoted = toggle_manager(store, "s1", False, "Ali")
        demoted = toggle_manager(store, "s1", True, "Ali")

        assert promoted.message == "Ali promoted to Manager!"
        assert promoted.severity == Severity.SUCCESS
        assert demoted.message == "Ali removed from Manager."
        assert demoted.severity == Severity.WARNING

    def test_double_toggle_restores_original_value(self, store):
        store.seed("users", "s1", {"isManager": False})

        toggle_manager(store, "s1", False)
        assert store.doc("users", "s1")["isManager"] is True
        toggle_manager(store, "s1", True)

        assert store.doc("users", "s1")["isManager"] is False

    def test_single_field_update(self, store):
        store.seed("users", "s1", {"isManager": True, "fullName": "Ali"})

        toggle_manager(store, "s1", True)

        assert store.writes == [("update", "users", "s1", {"isManager": False})]
        assert store.doc("users", "s1")["fullName"] == "Ali"

    def test_store_failure_is_reported_as_error_notice(self, store):
        store.seed("users", "s1", {})
        store.fail.add("update")

        notice = toggle_manager(store, "s1", False, "Ali")

        assert notice.severity == Severity.ERROR
        assert notice.message.startswith("Error: ")


class TestAdminProfile:
    def test_super_admin_department_is_trimmed(self, store, settings):
        store.seed("users", "a1", {"fullName": "Dr. Khan", "department": " CS "})

        profile = load_admin_profile(store, Identity(uid="a1"), settings)

        assert profile.name == "Dr. Khan"
        assert profile.is_super_admin

    def test_defaults_without_a_users_document(self, store, settings):
        profile = load_admin_profile(store, Identity(uid="a1"), settings)

        assert profile.name == "Admin"
        assert profile.department is None
        assert not profile.is_super_admin


def test_list_students_filters_by_department_and_approval(store):
    _seed_students(store)

    students = list_students(store, AdminProfile(uid="a1", department="CS"))

    assert [s.uid for s in students] == ["s1"]
    assert students[0].program == "BS"


def test_list_events_applies_filters(store, now):
    _seed_events(store, now)

    result = list_events(store, MainFilter.ALL, TimeFilter.ALL_TIME, now)

    assert result.total_events == 3
    assert [e.id for e in result.events] == ["open2", "open1", "past1"]
    assert [e.is_past for e in result.events] == [False, False, True]
    assert result.events[1].registered_count == 1


class TestAdminConsole:
    pytestmark = pytest.mark.anyio

    @pytest.fixture
    def changes(self):
        return []

    @pytest.fixture
    def console(self, settings, now, changes):
        console = AdminConsole(
            AdminProfile(uid="a1", name="Dr. Khan", department="CS"),
            settings,
            on_change=lambda: changes.append(1),
            clock=lambda: now,
        )
        return console

    async def test_start_loads_both_snapshots(self, console, store, now, changes):
        _seed_events(store, now)
        _seed_students(store)

        console.start(store)
        await asyncio.sleep(0)

        view = console.view()
        assert view.total_events == 3
        assert [e.id for e in view.events] == ["open2", "open1", "past1"]
        assert [s.uid for s in view.students] == ["s1"]
        assert view.ticker.total == 2
        assert view.ticker.title == "Seminar"
        assert console.ticker.rotating
        assert len(changes) == 2
        console.close()

    async def test_filters_rederive_the_view(self, console, store, now, changes):
        _seed_events(store, now)
        console.start(store)
        await asyncio.sleep(0)

        console.set_filters(main_filter=MainFilter.PAST)

        assert [e.id for e in console.view().events] == ["past1"]
        console.set_filters(main_filter=MainFilter.UPCOMING, time_filter=TimeFilter.WEEK)
        assert [e.id for e in console.view().events] == ["open2", "open1"]
        assert changes
        console.close()

    async def test_manager_flag_only_changes_with_next_snapshot(self, console, store, now):
        _seed_students(store)
        console.start(store)
        await asyncio.sleep(0)
        assert console.view().students[0].is_manager is False

        toggle_manager(store, "s1", False, "Ali")
        assert console.view().students[0].is_manager is False

        await asyncio.sleep(0)
        assert console.view().students[0].is_manager is True
        console.close()

    async def test_close_unsubscribes_and_ignores_late_snapshots(self, console, store, now, changes):
        _seed_events(store, now)
        console.start(store)
        await asyncio.sleep(0)

        console.close()
        seen = len(changes)
        console.on_events([])
        store.seed("events", "late", {"date": now + timedelta(days=4)})
        store.set("events", "later", {"date": now + timedelta(days=5)})
        await asyncio.sleep(0)

        assert store.listeners == []
        assert not console.ticker.rotating
        assert console.view().total_events == 3
        assert len(changes) == seen
