"""Tests for webhook verification and reconciliation."""

import hashlib
import hmac
from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import select

from meeting_service.core.concurrency import KeyedLocks
from meeting_service.core.errors import UnauthorizedError
from meeting_service.models.artifact import PastMeetingArtifact
from meeting_service.models.participant import ParticipantSession, PastMeetingParticipant
from meeting_service.models.past_meeting import PastMeeting, PastMeetingCreate
from meeting_service.models.summary import SummaryUpdate
from meeting_service.scheduling.recurrence import occurrence_id
from meeting_service.webhooks.events import Participant, WebhookEnvelope, WebhookEventKind
from meeting_service.webhooks.reconciler import IGNORED, WebhookReconciler
from meeting_service.webhooks.validator import sign, url_validation_response, verify_signature

FIRST_MONDAY = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)
SECRET = "webhook-secret"


def at(minutes: int) -> str:
    return (FIRST_MONDAY + timedelta(minutes=minutes)).isoformat()


def envelope(event: str, obj: dict) -> WebhookEnvelope:
    return WebhookEnvelope(event=event, event_ts=1_894_000_000_000, payload={"object": obj})


@pytest.fixture(name="reconciler")
def reconciler_fixture(session, clock) -> WebhookReconciler:
    return WebhookReconciler(session, KeyedLocks(), clock)


@pytest.fixture(name="deliver")
def deliver_fixture(reconciler, weekly_meeting):
    """Deliver an event for the weekly meeting."""
    meeting_id = weekly_meeting.platform_meeting_id

    def deliver(event: str, **fields) -> dict:
        return reconciler.handle(envelope(event, {"id": meeting_id, **fields}))

    return deliver


def past_meetings(session) -> list[PastMeeting]:
    return list(session.exec(select(PastMeeting)).all())


class TestSignature:
    def test_valid(self):
        body = b'{"event": "meeting.started"}'
        signature = sign(body, "1700000000", SECRET)
        verify_signature(body, signature, "1700000000", SECRET, 300, now=1700000100)

    def test_signature_format(self):
        body = b"{}"
        expected = hmac.new(SECRET.encode(), b"v0:1700000000:{}", hashlib.sha256).hexdigest()
        assert sign(body, "1700000000", SECRET) == f"v0={expected}"

    def test_tampered_body(self):
        signature = sign(b'{"a": 1}', "1700000000", SECRET)
        with pytest.raises(UnauthorizedError):
            verify_signature(b'{"a": 2}', signature, "1700000000", SECRET, 300, now=1700000000)

    def test_replayed(self):
        body = b"{}"
        with pytest.raises(UnauthorizedError):
            verify_signature(
                body, sign(body, "1700000000", SECRET), "1700000000", SECRET, 300, now=1700000301
            )

    def test_millisecond_timestamp(self):
        body = b"{}"
        ts = "1700000000000"
        verify_signature(body, sign(body, ts, SECRET), ts, SECRET, 300, now=1700000010)

    @pytest.mark.parametrize(
        "signature, timestamp", [(None, "1700000000"), ("v0=abc", None), ("v0=abc", "soon")]
    )
    def test_missing_or_malformed_headers(self, signature, timestamp):
        with pytest.raises(UnauthorizedError):
            verify_signature(b"{}", signature, timestamp, SECRET, 300, now=1700000000)

    def test_unconfigured_secret(self):
        with pytest.raises(UnauthorizedError):
            verify_signature(b"{}", "v0=abc", "1700000000", "", 300, now=1700000000)

    def test_url_validation(self):
        answer = url_validation_response("plain", SECRET)
        assert answer["plainToken"] == "plain"
        expected = hmac.new(SECRET.encode(), b"plain", hashlib.sha256).hexdigest()
        assert answer["encryptedToken"] == expected


class TestEvents:
    def test_kind_fallback(self):
        assert WebhookEventKind.parse("meeting.started") == WebhookEventKind.MEETING_STARTED
        assert WebhookEventKind.parse("meeting.deleted") == WebhookEventKind.UNKNOWN

    def test_identity_key(self):
        assert Participant(email=" Bob@Example.com ").identity_key == "bob@example.com"
        assert Participant(participant_user_id="u1", user_id="u2").identity_key == "id:u1"
        assert Participant(user_name="Guest").identity_key == "name:Guest"
        assert Participant().identity_key is None


class TestMeetingLifecycle:
    def test_started(self, deliver, session):
        result = deliver("meeting.started", uuid="s1", start_time=at(2))
        assert result["status"] == "processed"
        assert result["occurrence_id"] == occurrence_id(FIRST_MONDAY)
        assert result["state"] == "open"

        (past_meeting,) = past_meetings(session)
        assert past_meeting.title == "Weekly Sync"
        assert past_meeting.source == "webhook"

    def test_started_twice(self, deliver, service, session):
        first = deliver("meeting.started", uuid="s1", start_time=at(2))
        second = deliver("meeting.started", uuid="s1", start_time=at(2))
        assert first["past_meeting_uid"] == second["past_meeting_uid"]
        assert len(past_meetings(session)) == 1
        read = service.get_past_meeting(past_meetings(session)[0].uid)
        assert len(read.sessions) == 1

    def test_started_then_ended(self, deliver, service, session):
        deliver("meeting.started", uuid="s1", start_time=at(2))
        result = deliver("meeting.ended", uuid="s1", start_time=at(2), end_time=at(58))
        assert result["state"] == "closed"
        (record,) = service.get_past_meeting(past_meetings(session)[0].uid).sessions
        assert record.end_time is not None

    def test_ended_before_started(self, deliver, service, session):
        ended = deliver("meeting.ended", uuid="s1", end_time=at(58))
        assert ended["occurrence_id"] == occurrence_id(FIRST_MONDAY)
        assert ended["state"] == "closed"

        started = deliver("meeting.started", uuid="s1", start_time=at(2))
        assert started["past_meeting_uid"] == ended["past_meeting_uid"]
        assert started["state"] == "closed"
        (record,) = service.get_past_meeting(past_meetings(session)[0].uid).sessions
        assert record.start_time is not None
        assert record.end_time is not None

    def test_ended_twice(self, deliver, service, session):
        deliver("meeting.started", uuid="s1", start_time=at(2))
        deliver("meeting.ended", uuid="s1", end_time=at(58))
        deliver("meeting.ended", uuid="s1", end_time=at(58))
        assert len(service.get_past_meeting(past_meetings(session)[0].uid).sessions) == 1

    def test_restart(self, deliver, service, session):
        deliver("meeting.started", uuid="s1", start_time=at(2))
        deliver("meeting.ended", uuid="s1", end_time=at(20))
        restarted = deliver("meeting.started", uuid="s2", start_time=at(25))
        assert restarted["state"] == "open"
        deliver("meeting.ended", uuid="s2", end_time=at(60))

        assert len(past_meetings(session)) == 1
        read = service.get_past_meeting(past_meetings(session)[0].uid)
        assert [s.provider_session_id for s in read.sessions] == ["s1", "s2"]
        assert read.state == "closed"

    def test_occurrences_get_separate_records(self, deliver, session):
        deliver("meeting.started", uuid="s1", start_time=at(2))
        next_week = (FIRST_MONDAY + timedelta(weeks=1, minutes=1)).isoformat()
        result = deliver("meeting.started", uuid="s2", start_time=next_week)
        assert result["occurrence_id"] == occurrence_id(FIRST_MONDAY + timedelta(weeks=1))
        assert len(past_meetings(session)) == 2

    def test_manual_record_is_reused(self, deliver, service, weekly_meeting):
        manual = service.create_past_meeting(
            PastMeetingCreate(
                meeting_uid=weekly_meeting.uid,
                occurrence_id=occurrence_id(FIRST_MONDAY),
            )
        )
        result = deliver("meeting.started", uuid="s1", start_time=at(2))
        assert result["past_meeting_uid"] == str(manual.uid)
        assert service.get_past_meeting(manual.uid).source == "manual"

    def test_off_schedule_meeting(self, reconciler, single_meeting, session):
        started = datetime(2030, 2, 20, 9, 0, tzinfo=UTC)
        result = reconciler.handle(
            envelope(
                "meeting.started",
                {
                    "id": single_meeting.platform_meeting_id,
                    "uuid": "x",
                    "start_time": started.isoformat(),
                },
            )
        )
        assert result["occurrence_id"] == occurrence_id(started)
        (past_meeting,) = past_meetings(session)
        assert past_meeting.title == "Kickoff"


class TestDroppedEvents:
    def test_unknown_kind(self, reconciler, weekly_meeting):
        event = envelope("meeting.deleted", {"id": weekly_meeting.platform_meeting_id})
        assert reconciler.handle(event) == IGNORED

    def test_unknown_meeting(self, reconciler, weekly_meeting, session):
        event = envelope("meeting.started", {"id": "999", "start_time": at(0)})
        assert reconciler.handle(event) == IGNORED
        assert past_meetings(session) == []

    def test_malformed_object(self, reconciler, weekly_meeting):
        assert reconciler.handle(envelope("meeting.started", {"uuid": "s1"})) == IGNORED


class TestParticipants:
    def _participant(self, session, key: str) -> PastMeetingParticipant:
        return session.exec(
            select(PastMeetingParticipant).where(PastMeetingParticipant.identity_key == key)
        ).one()

    def _intervals(self, session, participant) -> list[ParticipantSession]:
        return list(
            session.exec(
                select(ParticipantSession).where(
                    ParticipantSession.participant_uid == participant.uid
                )
            ).all()
        )

    def test_invited_registrant_joins(self, deliver, service, session, weekly_meeting, alice):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        joined = {
            "id": "p1",
            "email": "Alice@Example.com",
            "user_name": "Alice Liddell",
            "join_time": at(3),
        }
        deliver("meeting.participant_joined", uuid="s1", participant=joined)
        deliver("meeting.participant_joined", uuid="s1", participant=joined)

        participant = self._participant(session, "alice@example.com")
        assert participant.is_invited
        assert participant.is_attended
        assert participant.registrant_uid == alice.uid
        assert len(self._intervals(session, participant)) == 1
        registrant = service.get_registrant(weekly_meeting.uid, alice.uid)
        assert registrant.attended_occurrence_count == 1

    def test_invited_but_absent(self, deliver, session, alice):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        participant = self._participant(session, "alice@example.com")
        assert participant.is_invited
        assert not participant.is_attended

    def test_join_then_leave(self, deliver, session):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        deliver(
            "meeting.participant_joined",
            uuid="s1",
            participant={"user_id": "u7", "user_name": "Guest", "join_time": at(5)},
        )
        deliver(
            "meeting.participant_left",
            uuid="s1",
            participant={"user_id": "u7", "user_name": "Guest", "leave_time": at(50)},
        )
        participant = self._participant(session, "id:u7")
        assert not participant.is_invited
        assert participant.is_attended
        (interval,) = self._intervals(session, participant)
        assert interval.leave_time is not None

    def test_registrant_joins_without_email(
        self, deliver, service, session, weekly_meeting, alice
    ):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        joined = {
            "email": "",
            "user_id": "16778240",
            "registrant_id": alice.platform_registrant_id,
            "join_time": at(2),
        }
        deliver("meeting.participant_joined", uuid="s1", participant=joined)
        deliver(
            "meeting.participant_left",
            uuid="s1",
            participant={**joined, "join_time": None, "leave_time": at(40)},
        )

        (participant,) = session.exec(select(PastMeetingParticipant)).all()
        assert participant.identity_key == "alice@example.com"
        assert participant.is_invited
        assert participant.is_attended
        (interval,) = self._intervals(session, participant)
        assert interval.leave_time is not None
        registrant = service.get_registrant(weekly_meeting.uid, alice.uid)
        assert registrant.attended_occurrence_count == 1

    def test_left_without_join(self, deliver, session):
        deliver(
            "meeting.participant_left",
            uuid="s1",
            start_time=at(0),
            participant={"user_id": "u8", "leave_time": at(30), "duration": 600},
        )
        participant = self._participant(session, "id:u8")
        assert participant.is_attended
        (interval,) = self._intervals(session, participant)
        assert interval.leave_time - interval.join_time == timedelta(minutes=10)

    def test_leave_does_not_clear_attendance(self, deliver, session):
        left = {"user_id": "u9", "join_time": at(5), "leave_time": at(10)}
        deliver("meeting.participant_joined", uuid="s1", start_time=at(0), participant=left)
        deliver("meeting.participant_left", uuid="s1", participant=left)
        deliver("meeting.participant_left", uuid="s1", participant=left)
        participant = self._participant(session, "id:u9")
        assert participant.is_attended
        assert len(self._intervals(session, participant)) == 1


class TestEnrichment:
    def test_recording_deduplicated(self, deliver, session):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        deliver("meeting.ended", uuid="s1", end_time=at(60))
        files = [
            {"id": "f1", "file_type": "MP4", "download_url": "https://example.test/f1"},
            {"id": "f2", "file_type": "TRANSCRIPT", "download_url": "https://example.test/f2"},
        ]
        deliver("recording.completed", uuid="s1", recording_files=files)
        result = deliver("recording.completed", uuid="s1", recording_files=files)
        assert result["state"] == "enriched"

        artifacts = session.exec(select(PastMeetingArtifact)).all()
        assert sorted((a.provider_artifact_id, a.kind) for a in artifacts) == [
            ("f1", "recording"),
            ("f2", "transcript"),
        ]

    def test_summary_keeps_edits(self, deliver, service, session):
        deliver("meeting.started", uuid="s1", start_time=at(0))
        content = {
            "summary_title": "Weekly Sync",
            "summary_overview": "First draft",
            "next_steps": ["Ship it"],
        }
        deliver("meeting.summary_completed", uuid="s1", summary=content)

        past_meeting = past_meetings(session)[0]
        (summary,) = service.list_summaries(past_meeting.uid)
        assert summary.summary_overview == "First draft"
        assert summary.next_steps == "Ship it"
        service.update_summary(
            past_meeting.uid, summary.uid, SummaryUpdate(edited_overview="Edited"), summary.version
        )

        redelivered = {**content, "summary_overview": "Second draft"}
        deliver("meeting.summary_completed", uuid="s1", summary=redelivered)
        (summary,) = service.list_summaries(past_meeting.uid)
        assert summary.summary_overview == "Second draft"
        assert summary.edited_overview == "Edited"
        assert summary.version == 3
