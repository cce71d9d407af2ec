"""Tests for the meeting lifecycle service."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import select

from meeting_service.core.errors import (
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from meeting_service.models.artifact import AttachmentCreate
from meeting_service.models.meeting import Meeting, MeetingCreate, MeetingUpdate, Recurrence
from meeting_service.models.participant import ParticipantUpdate
from meeting_service.models.past_meeting import PastMeetingCreate
from meeting_service.models.registrant import Registrant, RegistrantCreate
from meeting_service.models.rsvp import RSVPCreate, RSVPResponse, RSVPScope
from meeting_service.scheduling.recurrence import occurrence_id

FIRST_MONDAY = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)


def meeting_data(**overrides) -> MeetingCreate:
    fields = {
        "project_uid": "project-1",
        "title": "Board Meeting",
        "start_time": FIRST_MONDAY,
        "duration": 45,
    }
    fields.update(overrides)
    return MeetingCreate(**fields)


def first_held(meeting) -> PastMeetingCreate:
    return PastMeetingCreate(meeting_uid=meeting.uid, occurrence_id=occurrence_id(FIRST_MONDAY))


class TestCreateMeeting:
    def test_create(self, service, provider):
        meeting = service.create_meeting(meeting_data(), caller="organizer")
        assert meeting.version == 1
        assert meeting.platform_meeting_id == "1001"
        assert meeting.join_url == "https://example.test/j/1001"
        assert meeting.created_by == "organizer"
        assert provider.called("create_meeting") == [("create_meeting", "Board Meeting")]
        assert service.get_settings(meeting.uid).organizers == ["organizer"]

    def test_start_time_truncated_to_seconds(self, service):
        meeting = service.create_meeting(
            meeting_data(start_time=FIRST_MONDAY.replace(microsecond=250000))
        )
        assert occurrence_id(meeting.start_time) == occurrence_id(FIRST_MONDAY)
        assert meeting.start_time.microsecond == 0

    def test_platform_failure_stores_nothing(self, service, provider, session):
        provider.fail_on.add("create_meeting")
        with pytest.raises(TransientError):
            service.create_meeting(meeting_data())
        assert session.exec(select(Meeting)).all() == []

    def test_store_failure_removes_platform_meeting(
        self, service, provider, session, monkeypatch
    ):
        def fail(entity):
            raise ConflictError("Meeting already exists")

        monkeypatch.setattr(service.guard, "create", fail)
        with pytest.raises(ConflictError):
            service.create_meeting(meeting_data())
        assert provider.called("delete_meeting") == [("delete_meeting", "1001", None)]
        assert session.exec(select(Meeting)).all() == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"timezone": "Mars/Olympus_Mons"},
            {"recurrence": Recurrence(type=2)},
            {"recurrence": Recurrence(type=1, end_times=2, end_date_time=FIRST_MONDAY)},
            {"platform": "Carrier Pigeon"},
        ],
    )
    def test_invalid_input(self, service, provider, overrides):
        with pytest.raises(ValidationError):
            service.create_meeting(meeting_data(**overrides))
        assert provider.called("create_meeting") == []


class TestUpdateMeeting:
    def test_partial_update(self, service, weekly_meeting, provider):
        updated = service.update_meeting(
            weekly_meeting.uid, MeetingUpdate(description="Agenda attached"), 1
        )
        assert updated.description == "Agenda attached"
        assert updated.title == "Weekly Sync"
        assert provider.called("update_meeting") == [("update_meeting", "1001")]

    def test_invalid_visibility(self, service, weekly_meeting):
        with pytest.raises(ValidationError):
            service.update_meeting(weekly_meeting.uid, MeetingUpdate(visibility="secret"), 1)

    def test_schedule_change_resettles_responses(self, service, weekly_meeting, alice):
        service.submit_rsvp(
            weekly_meeting.uid,
            RSVPCreate(username="alice", response=RSVPResponse.ACCEPTED, scope=RSVPScope.ALL),
        )
        meeting = service.update_meeting(
            weekly_meeting.uid, MeetingUpdate(recurrence=Recurrence(type=2, weekly_days="2,4")), 1
        )
        wednesday = occurrence_id(FIRST_MONDAY + timedelta(days=2))
        assert service.get_occurrence(meeting.uid, wednesday).response_count_yes == 1

    def test_failed_resettle_keeps_old_schedule(
        self, service, weekly_meeting, alice, provider, monkeypatch
    ):
        service.submit_rsvp(
            weekly_meeting.uid,
            RSVPCreate(username="alice", response=RSVPResponse.ACCEPTED, scope=RSVPScope.ALL),
        )

        def fail(*args):
            raise RuntimeError("settle failed")

        monkeypatch.setattr(service.rsvps, "settle", fail)
        with pytest.raises(RuntimeError):
            service.update_meeting(
                weekly_meeting.uid,
                MeetingUpdate(recurrence=Recurrence(type=2, weekly_days="2,4")),
                1,
            )

        meeting = service.get_meeting(weekly_meeting.uid)
        assert meeting.version == 1
        assert meeting.recurrence_rule.weekly_days == "2"
        assert provider.called("update_meeting") == []
        monday = occurrence_id(FIRST_MONDAY)
        assert service.get_occurrence(meeting.uid, monday).response_count_yes == 1
        wednesday = occurrence_id(FIRST_MONDAY + timedelta(days=2))
        with pytest.raises(NotFoundError):
            service.get_occurrence(meeting.uid, wednesday)


class TestDeleteMeeting:
    def test_delete_is_logical(self, service, weekly_meeting, provider, notifier, alice):
        service.delete_meeting(weekly_meeting.uid, 1)
        with pytest.raises(NotFoundError):
            service.get_meeting(weekly_meeting.uid)
        assert service.get_meeting(weekly_meeting.uid, include_deleted=True).is_deleted
        assert service.list_meetings() == []
        assert provider.called("delete_meeting") == [("delete_meeting", "1001", None)]
        assert ("meeting_cancelled", 1) in notifier.events

    def test_history_survives_delete(self, service, weekly_meeting):
        past_meeting = service.create_past_meeting(first_held(weekly_meeting))
        service.delete_meeting(weekly_meeting.uid, 1)
        assert service.get_past_meeting(past_meeting.uid).title == "Weekly Sync"

    def test_list_by_project(self, service, weekly_meeting, single_meeting):
        service.create_meeting(meeting_data(project_uid="project-2"))
        assert len(service.list_meetings("project-1")) == 2
        assert len(service.list_meetings()) == 3


class TestRegistrants:
    def test_create(self, service, weekly_meeting, alice, notifier):
        assert alice.email == "alice@example.com"
        assert alice.type == "direct"
        assert alice.invites_sent_count == 1
        assert alice.platform_registrant_id == "reg-alice@example.com"
        assert ("invited", "alice@example.com") in notifier.events

    def test_target_must_be_an_occurrence(self, service, weekly_meeting):
        tuesday = occurrence_id(FIRST_MONDAY + timedelta(days=1))
        with pytest.raises(ValidationError):
            service.create_registrant(
                weekly_meeting.uid, RegistrantCreate(email="bob@example.com", occurrence_id=tuesday)
            )

    def test_resend(self, service, weekly_meeting, alice, notifier, clock):
        clock.advance(hours=1)
        registrant = service.resend_invitation(weekly_meeting.uid, alice.uid)
        assert registrant.invites_sent_count == 2
        assert registrant.version == 2
        assert ("resent", "alice@example.com") in notifier.events

    def test_delete(self, service, weekly_meeting, alice, provider, notifier):
        service.delete_registrant(weekly_meeting.uid, alice.uid, 1)
        assert service.list_registrants(weekly_meeting.uid) == []
        assert provider.called("delete_registrant") == [("delete_registrant", "alice@example.com")]
        assert ("removed", "alice@example.com") in notifier.events

    def test_committee_registrant_cannot_be_deleted(self, service, session, weekly_meeting):
        member = Registrant(
            meeting_uid=weekly_meeting.uid,
            email="member@example.com",
            type="committee",
            committee_uid="tsc",
        )
        session.add(member)
        session.commit()
        with pytest.raises(ValidationError):
            service.delete_registrant(weekly_meeting.uid, member.uid, 1)

    def test_registrant_of_other_meeting(self, service, single_meeting, alice):
        with pytest.raises(NotFoundError):
            service.get_registrant(single_meeting.uid, alice.uid)


class TestJoinLink:
    def test_public_meeting(self, service, weekly_meeting):
        assert service.get_join_link(weekly_meeting.uid) == "https://example.test/j/1001"

    def test_registrant_link(self, service, weekly_meeting, alice):
        link = service.get_join_link(weekly_meeting.uid, caller="alice")
        assert link == alice.join_url

    def test_restricted_meeting(self, service):
        meeting = service.create_meeting(meeting_data(restricted=True))
        with pytest.raises(NotFoundError):
            service.get_join_link(meeting.uid, caller="stranger")


class TestPastMeetings:
    def test_manual_from_start_time(self, service, weekly_meeting, alice):
        read = service.create_past_meeting(
            PastMeetingCreate(
                meeting_uid=weekly_meeting.uid,
                start_time=FIRST_MONDAY + timedelta(weeks=1, minutes=4),
                end_time=FIRST_MONDAY + timedelta(weeks=1, minutes=50),
            )
        )
        assert read.occurrence_id == occurrence_id(FIRST_MONDAY + timedelta(weeks=1))
        assert read.source == "manual"
        assert read.state == "closed"
        assert len(read.sessions) == 1

        (participant,) = service.list_participants(read.uid)
        assert participant.email == "alice@example.com"
        assert participant.is_invited
        assert not participant.is_attended

    def test_duplicate(self, service, weekly_meeting):
        data = PastMeetingCreate(
            meeting_uid=weekly_meeting.uid, occurrence_id=occurrence_id(FIRST_MONDAY)
        )
        service.create_past_meeting(data)
        with pytest.raises(ConflictError):
            service.create_past_meeting(data)

    def test_recurring_needs_occurrence(self, service, weekly_meeting):
        with pytest.raises(ValidationError):
            service.create_past_meeting(PastMeetingCreate(meeting_uid=weekly_meeting.uid))

    def test_single_meeting_defaults_to_anchor(self, service, single_meeting):
        read = service.create_past_meeting(PastMeetingCreate(meeting_uid=single_meeting.uid))
        assert read.occurrence_id == occurrence_id(single_meeting.start_time)
        assert read.state == "closed"

    def test_snapshot_keeps_occurrence_edits(self, service, weekly_meeting):
        from meeting_service.models.occurrence import OccurrenceUpdate

        occ = occurrence_id(FIRST_MONDAY)
        service.edit_occurrence(weekly_meeting.uid, occ, OccurrenceUpdate(title="Budget review"))
        read = service.create_past_meeting(
            PastMeetingCreate(meeting_uid=weekly_meeting.uid, occurrence_id=occ)
        )
        service.update_meeting(weekly_meeting.uid, MeetingUpdate(title="Renamed"), 2)
        assert service.get_past_meeting(read.uid).title == "Budget review"

    def test_delete(self, service, weekly_meeting, alice):
        read = service.create_past_meeting(first_held(weekly_meeting))
        service.delete_past_meeting(read.uid, read.version)
        with pytest.raises(NotFoundError):
            service.get_past_meeting(read.uid)
        assert service.list_past_meetings(weekly_meeting.uid) == []

    def test_update_participant(self, service, weekly_meeting, alice):
        read = service.create_past_meeting(first_held(weekly_meeting))
        (participant,) = service.list_participants(read.uid)
        updated = service.update_participant(
            read.uid, participant.uid, ParticipantUpdate(is_attended=True), participant.version
        )
        assert updated.is_attended
        assert updated.version == 2


class TestAttachments:
    def test_meeting_attachment(self, service, weekly_meeting):
        attachment = service.add_attachment(
            AttachmentCreate(object_uid="obj-1", name="agenda.pdf", content_type="application/pdf"),
            meeting_uid=weekly_meeting.uid,
            caller="organizer",
        )
        assert attachment.uploaded_by == "organizer"
        assert [a.uid for a in service.list_attachments(meeting_uid=weekly_meeting.uid)] == [
            attachment.uid
        ]
        service.delete_attachment(attachment.uid, meeting_uid=weekly_meeting.uid)
        assert service.list_attachments(meeting_uid=weekly_meeting.uid) == []

    def test_wrong_owner(self, service, weekly_meeting, single_meeting):
        attachment = service.add_attachment(
            AttachmentCreate(object_uid="obj-1", name="notes.txt", content_type="text/plain"),
            meeting_uid=weekly_meeting.uid,
        )
        with pytest.raises(NotFoundError):
            service.delete_attachment(attachment.uid, meeting_uid=single_meeting.uid)
