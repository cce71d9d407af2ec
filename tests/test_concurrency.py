"""Tests for optimistic concurrency and keyed locks."""

import threading
from datetime import UTC, datetime

import pytest
from sqlmodel import Session, SQLModel, create_engine

from meeting_service.core.concurrency import (
    ConcurrencyGuard,
    KeyedLocks,
    format_version,
    parse_version,
)
from meeting_service.core.errors import ConflictError, TransientError, ValidationError
from meeting_service.models.meeting import Meeting, MeetingSettingsUpdate, MeetingUpdate
from meeting_service.models.registrant import RegistrantCreate


class TestVersionTokens:
    def test_format(self):
        assert format_version(3) == '"3"'

    @pytest.mark.parametrize(
        "token, expected", [('"3"', 3), ('W/"3"', 3), ("3", 3), (3, 3), (None, None)]
    )
    def test_parse(self, token, expected):
        assert parse_version(token) == expected

    def test_parse_malformed(self):
        with pytest.raises(ValidationError):
            parse_version('"abc"')


class TestGuardedUpdates:
    def test_update_advances_version(self, service, weekly_meeting):
        updated = service.update_meeting(
            weekly_meeting.uid, MeetingUpdate(title="Renamed"), format_version(1)
        )
        assert updated.version == 2
        assert updated.title == "Renamed"

    def test_stale_version_rejected(self, service, weekly_meeting, provider):
        service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="First"), 1)
        with pytest.raises(ConflictError) as exc_info:
            service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="Second"), 1)
        assert exc_info.value.precondition_failed
        meeting = service.get_meeting(weekly_meeting.uid)
        assert meeting.title == "First"
        assert meeting.version == 2
        assert len(provider.called("update_meeting")) == 1

    def test_missing_version_rejected(self, service, weekly_meeting):
        with pytest.raises(ValidationError):
            service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="Renamed"), None)

    def test_stale_delete_rejected(self, service, weekly_meeting, alice):
        service.resend_invitation(weekly_meeting.uid, alice.uid)
        with pytest.raises(ConflictError):
            service.delete_registrant(weekly_meeting.uid, alice.uid, 1)
        assert service.get_registrant(weekly_meeting.uid, alice.uid).email == "alice@example.com"

    def test_settings_versioned_separately(self, service, weekly_meeting):
        service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="Renamed"), 1)
        meeting_settings = service.update_settings(
            weekly_meeting.uid, MeetingSettingsUpdate(organizers=["organizer", "bob"]), 1
        )
        assert meeting_settings.version == 2
        assert meeting_settings.organizers == ["organizer", "bob"]

    def test_provider_failure_rolls_back(self, service, weekly_meeting, provider):
        provider.fail_on.add("update_meeting")
        with pytest.raises(TransientError):
            service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="Renamed"), 1)
        meeting = service.get_meeting(weekly_meeting.uid)
        assert meeting.title == "Weekly Sync"
        assert meeting.version == 1


class TestUniqueness:
    def test_duplicate_email(self, service, weekly_meeting, alice, provider):
        with pytest.raises(ConflictError) as exc_info:
            service.create_registrant(
                weekly_meeting.uid, RegistrantCreate(email="ALICE@example.com")
            )
        assert not exc_info.value.precondition_failed
        assert len(provider.called("create_registrant")) == 1
        assert len(service.list_registrants(weekly_meeting.uid)) == 1

    def test_same_email_in_other_meeting(self, service, weekly_meeting, single_meeting, alice):
        registrant = service.create_registrant(
            single_meeting.uid, RegistrantCreate(email="alice@example.com")
        )
        assert registrant.meeting_uid == single_meeting.uid


class TestConditionalWrite:
    def test_racing_writers(self, tmp_path):
        """Two sessions read version 1; only the first write lands."""
        engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        SQLModel.metadata.create_all(engine)
        with Session(engine) as setup:
            meeting = Meeting(
                project_uid="p",
                title="Original",
                start_time=datetime(2030, 1, 7, 10, 0, tzinfo=UTC),
                duration=30,
            )
            ConcurrencyGuard(setup).create(meeting)
            setup.commit()
            uid = meeting.uid

        with Session(engine) as first, Session(engine) as second:
            mine = first.get(Meeting, uid)
            theirs = second.get(Meeting, uid)
            assert mine.version == theirs.version == 1

            ConcurrencyGuard(first).mutate(mine, 1, lambda m: setattr(m, "title", "First"))
            first.commit()

            with pytest.raises(ConflictError):
                ConcurrencyGuard(second).mutate(theirs, 1, lambda m: setattr(m, "title", "Second"))
            second.rollback()

        with Session(engine) as check:
            stored = check.get(Meeting, uid)
            assert stored.title == "First"
            assert stored.version == 2
        engine.dispose()


class TestKeyedLocks:
    def test_same_key_is_exclusive(self):
        locks = KeyedLocks()
        order = []

        def worker():
            with locks.hold("rsvp:1"):
                order.append("second")

        with locks.hold("rsvp:1"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join(timeout=0.2)
            order.append("first")
        thread.join()
        assert order == ["first", "second"]

    def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        done = []

        def worker():
            with locks.hold("rsvp:2"):
                done.append(True)

        with locks.hold("rsvp:1"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join(timeout=1)
            assert done == [True]

    def test_released_locks_are_dropped(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            pass
        assert locks._locks == {}
