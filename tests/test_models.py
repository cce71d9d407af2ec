"""Tests for database models."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlmodel import Session, select

from meeting_service.models import (
    RSVP,
    Meeting,
    OccurrenceState,
    PastMeeting,
    Recurrence,
    Registrant,
    RSVPResponse,
    RSVPScope,
)
from meeting_service.models.meeting import MeetingCreate

START = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)


def make_meeting(**overrides) -> Meeting:
    fields = {"project_uid": "project-1", "title": "Sync", "start_time": START, "duration": 30}
    fields.update(overrides)
    return Meeting(**fields)


class TestMeetingModel:
    """Tests for the Meeting model."""

    def test_create_meeting(self, session: Session):
        """Test creating a basic meeting."""
        session.add(make_meeting(platform_meeting_id="123"))
        session.commit()

        retrieved = session.exec(
            select(Meeting).where(Meeting.platform_meeting_id == "123")
        ).first()

        assert retrieved is not None
        assert retrieved.title == "Sync"
        assert retrieved.version == 1
        assert retrieved.is_deleted is False
        assert retrieved.recurrence_rule is None

    def test_recurrence_round_trip(self, session: Session):
        """The JSON recurrence column comes back as a typed rule."""
        meeting = make_meeting(recurrence={"type": 2, "weekly_days": "2,4"})
        session.add(meeting)
        session.commit()
        session.refresh(meeting)

        rule = meeting.recurrence_rule
        assert isinstance(rule, Recurrence)
        assert (rule.type, rule.weekly_days) == (2, "2,4")
        assert rule.repeat_interval == 1

    def test_visibility_checked_on_create(self):
        with pytest.raises(ValidationError):
            MeetingCreate(
                project_uid="p", title="Sync", start_time=START, duration=30, visibility="secret"
            )

    def test_duration_bounds(self):
        with pytest.raises(ValidationError):
            MeetingCreate(project_uid="p", title="Sync", start_time=START, duration=601)


class TestRegistrantModel:
    def test_unique_email_per_meeting(self, session: Session):
        meeting = make_meeting()
        session.add(meeting)
        session.commit()
        session.add(Registrant(meeting_uid=meeting.uid, email="a@example.com"))
        session.commit()

        session.add(Registrant(meeting_uid=meeting.uid, email="a@example.com"))
        with pytest.raises(Exception):  # IntegrityError
            session.commit()

    def test_covers(self):
        everywhere = Registrant(meeting_uid=uuid4(), email="a@example.com")
        one = Registrant(meeting_uid=uuid4(), email="b@example.com", occurrence_id="100")
        assert everywhere.covers("100") and everywhere.covers("200")
        assert one.covers("100")
        assert not one.covers("200")

    def test_full_name(self):
        registrant = Registrant(meeting_uid=uuid4(), email="a@example.com", first_name="Ada")
        assert registrant.full_name == "Ada"


class TestRSVPModel:
    @pytest.mark.parametrize(
        "scope, anchor, expected",
        [
            (RSVPScope.ALL, "", [True, True, True]),
            (RSVPScope.SINGLE, "200", [False, True, False]),
            (RSVPScope.THIS_AND_FOLLOWING, "200", [False, True, True]),
        ],
    )
    def test_covers(self, scope, anchor, expected):
        rsvp = RSVP(
            meeting_uid=uuid4(),
            registrant_uid=uuid4(),
            response=RSVPResponse.ACCEPTED,
            scope=scope,
            occurrence_id=anchor,
        )
        assert [rsvp.covers(o) for o in ("100", "200", "1000")] == expected


class TestOccurrenceStateModel:
    def test_defaults(self):
        state = OccurrenceState(meeting_uid=uuid4(), occurrence_id="100")
        assert not state.is_modified
        assert not state.is_override
        assert state.accepted_count == 0

    def test_edited(self):
        state = OccurrenceState(meeting_uid=uuid4(), occurrence_id="100", title="Special")
        assert state.is_modified
        assert state.is_override

    def test_cancelled(self):
        state = OccurrenceState(meeting_uid=uuid4(), occurrence_id="100", is_cancelled=True)
        assert not state.is_modified
        assert state.is_override


class TestPastMeetingModel:
    def test_one_record_per_occurrence(self, session: Session):
        meeting = make_meeting()
        session.add(meeting)
        session.commit()

        def record() -> PastMeeting:
            return PastMeeting(
                meeting_uid=meeting.uid,
                occurrence_id="1894010400",
                project_uid="project-1",
                title="Sync",
                scheduled_start_time=START,
                scheduled_end_time=START + timedelta(minutes=30),
            )

        session.add(record())
        session.commit()
        session.add(record())
        with pytest.raises(Exception):  # IntegrityError
            session.commit()
