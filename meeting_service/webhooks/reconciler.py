"""Fold platform lifecycle webhooks into past meeting records.

Delivery is at-least-once and in any order, so every handler is an
idempotent upsert:

    meeting.started      -> past meeting (created on first touch) + session
    meeting.ended        -> end stamped on the matching or latest open session
    participant joined   -> participant marked attended + join interval
    participant left     -> leave stamped; attendance is never cleared
    recording/transcript -> artifacts, deduplicated by platform file id
    summary completed    -> raw summary fields; the edited overlay is kept

Events for the same (meeting, occurrence) pair are serialized with a
per-pair lock. No handler calls the conferencing platform.
"""

import logging
from datetime import UTC, datetime, timedelta

import pydantic
from sqlmodel import Session, select

from meeting_service.core.clock import as_utc, utcnow
from meeting_service.core.concurrency import ConcurrencyGuard, KeyedLocks
from meeting_service.core.config import settings
from meeting_service.models.artifact import PastMeetingArtifact
from meeting_service.models.meeting import Meeting
from meeting_service.models.participant import ParticipantSession, PastMeetingParticipant
from meeting_service.models.past_meeting import PastMeeting, PastMeetingSession
from meeting_service.models.registrant import Registrant
from meeting_service.models.summary import PastMeetingSummary
from meeting_service.scheduling.occurrences import OccurrenceStore
from meeting_service.scheduling.past_meetings import PastMeetingStore
from meeting_service.scheduling.recurrence import occurrence_id
from meeting_service.webhooks.events import (
    PAYLOAD_TYPES,
    MeetingObject,
    Participant,
    ParticipantObject,
    RecordingObject,
    SummaryObject,
    WebhookEnvelope,
    WebhookEventKind,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_FILE_TYPES = {"TRANSCRIPT", "CC", "TIMELINE", "SUMMARY"}

IGNORED = {"status": "ignored"}


class WebhookReconciler:
    """Applies verified webhook envelopes to the database."""

    def __init__(self, session: Session, locks: KeyedLocks, clock=utcnow):
        self.session = session
        self.locks = locks
        self.clock = clock
        self.occurrences = OccurrenceStore(session, clock)
        self.past_meetings = PastMeetingStore(session, self.occurrences)
        self.guard = ConcurrencyGuard(session)
        self.tolerance = timedelta(seconds=settings.session_match_tolerance_seconds)
        self._handlers = {
            WebhookEventKind.MEETING_STARTED: self._meeting_started,
            WebhookEventKind.MEETING_ENDED: self._meeting_ended,
            WebhookEventKind.PARTICIPANT_JOINED: self._participant_joined,
            WebhookEventKind.PARTICIPANT_LEFT: self._participant_left,
            WebhookEventKind.RECORDING_COMPLETED: self._artifacts,
            WebhookEventKind.TRANSCRIPT_COMPLETED: self._artifacts,
            WebhookEventKind.SUMMARY_COMPLETED: self._summary,
            WebhookEventKind.URL_VALIDATION: None,
            WebhookEventKind.UNKNOWN: None,
        }

    def handle(self, envelope: WebhookEnvelope) -> dict:
        """Reconcile one event. Unusable events are logged and dropped."""
        kind = envelope.kind
        handler = self._handlers[kind]
        if handler is None:
            logger.warning(f"Dropping webhook event {envelope.event!r}: not a lifecycle event")
            return IGNORED

        try:
            obj = PAYLOAD_TYPES[kind].model_validate(envelope.payload.get("object") or {})
        except pydantic.ValidationError as e:
            logger.warning(f"Dropping malformed {kind.value} event: {e.error_count()} errors")
            return IGNORED

        meeting = self.session.exec(
            select(Meeting).where(Meeting.platform_meeting_id == obj.id)
        ).first()
        if meeting is None:
            logger.warning(f"Dropping {kind.value} event for unknown platform meeting {obj.id}")
            return IGNORED

        occ_id = self._occurrence_for(meeting, obj, envelope)
        with self.locks.hold(f"{meeting.uid}:{occ_id}"):
            past_meeting, _ = self.past_meetings.open(meeting, occ_id)
            handler(meeting, past_meeting, obj, envelope)
            self.session.commit()
            state = self.past_meetings.state(past_meeting)

        logger.info(
            f"Reconciled {kind.value} for meeting {meeting.uid} occurrence {occ_id} "
            f"(state: {state.value})"
        )
        return {
            "status": "processed",
            "past_meeting_uid": str(past_meeting.uid),
            "occurrence_id": occ_id,
            "state": state.value,
        }

    # ── Pair resolution ──────────────────────────────────────────────────

    def _event_time(self, envelope: WebhookEnvelope) -> datetime:
        if envelope.event_ts:
            # event_ts is in milliseconds
            return datetime.fromtimestamp(envelope.event_ts / 1000, UTC)
        return self.clock()

    def _occurrence_for(self, meeting: Meeting, obj: MeetingObject, envelope) -> str:
        """Occurrence id an event belongs to.

        A session uuid seen before pins the event to that session's
        occurrence; otherwise the occurrence nearest to the reported start
        is used.
        """
        if obj.uuid:
            known = self.session.exec(
                select(PastMeeting.occurrence_id)
                .join(PastMeetingSession, PastMeetingSession.past_meeting_uid == PastMeeting.uid)
                .where(
                    PastMeeting.meeting_uid == meeting.uid,
                    PastMeetingSession.provider_session_id == obj.uuid,
                )
            ).first()
            if known is not None:
                return known

        when = obj.start_time or obj.end_time
        if when is None and isinstance(obj, ParticipantObject):
            when = obj.participant.join_time or obj.participant.leave_time
        if when is None and isinstance(obj, RecordingObject) and obj.recording_files:
            when = obj.recording_files[0].recording_start
        when = as_utc(when) if when is not None else self._event_time(envelope)

        occ_id = self.occurrences.nearest(meeting, when)
        if occ_id is None:
            occ_id = occurrence_id(when)
            logger.warning(
                f"No scheduled occurrence of meeting {meeting.uid} near {when.isoformat()}, "
                f"recording it as occurrence {occ_id}"
            )
        return occ_id

    # ── Sessions ─────────────────────────────────────────────────────────

    def _close_enough(self, a: datetime | None, b: datetime | None) -> bool:
        return a is not None and b is not None and abs(as_utc(a) - as_utc(b)) <= self.tolerance

    def _meeting_started(self, meeting, past_meeting, obj: MeetingObject, envelope) -> None:
        start = as_utc(obj.start_time) if obj.start_time else self._event_time(envelope)
        for existing in self.past_meetings.sessions(past_meeting):
            same_uuid = obj.uuid and existing.provider_session_id == obj.uuid
            compatible = not obj.uuid or existing.provider_session_id in (None, obj.uuid)
            # A session recorded from an early end event has no start yet
            awaiting_start = (
                existing.start_time is None
                and existing.end_time is not None
                and start <= as_utc(existing.end_time)
            )
            if same_uuid or (
                compatible and (self._close_enough(existing.start_time, start) or awaiting_start)
            ):
                if existing.start_time is None:
                    existing.start_time = start
                if existing.provider_session_id is None and obj.uuid:
                    existing.provider_session_id = obj.uuid
                self.session.add(existing)
                logger.debug(f"Duplicate start for past meeting {past_meeting.uid}")
                return

        self.session.add(
            PastMeetingSession(
                past_meeting_uid=past_meeting.uid,
                provider_session_id=obj.uuid,
                start_time=start,
            )
        )
        self.session.flush()

    def _meeting_ended(self, meeting, past_meeting, obj: MeetingObject, envelope) -> None:
        end = as_utc(obj.end_time) if obj.end_time else self._event_time(envelope)
        sessions = self.past_meetings.sessions(past_meeting)

        target = None
        if obj.uuid:
            target = next(
                (s for s in reversed(sessions) if s.provider_session_id == obj.uuid), None
            )
        if target is None:
            target = next((s for s in reversed(sessions) if s.end_time is None), None)

        if target is not None:
            if target.end_time is None:
                target.end_time = end
                if target.start_time is None and obj.start_time:
                    target.start_time = as_utc(obj.start_time)
                self.session.add(target)
            return

        if any(self._close_enough(s.end_time, end) for s in sessions):
            return
        # Ended arrived before started: record the closed session now and
        # let the late start event match it by uuid
        self.session.add(
            PastMeetingSession(
                past_meeting_uid=past_meeting.uid,
                provider_session_id=obj.uuid,
                start_time=as_utc(obj.start_time) if obj.start_time else None,
                end_time=end,
            )
        )
        self.session.flush()

    # ── Participants ─────────────────────────────────────────────────────

    def _participant(self, meeting, past_meeting, obj: ParticipantObject):
        registrant = self._registrant(meeting, obj.participant)
        # A registrant keeps the row seeded from the invite list even when
        # the platform omits the email on join and leave events
        key = registrant.email.lower() if registrant else obj.participant.identity_key
        if key is None:
            logger.warning(f"Participant event without identity for meeting {meeting.uid}")
            return None
        participant = self.session.exec(
            select(PastMeetingParticipant).where(
                PastMeetingParticipant.past_meeting_uid == past_meeting.uid,
                PastMeetingParticipant.identity_key == key,
            )
        ).first()
        if participant is not None:
            return participant

        first, _, last = (obj.participant.user_name or "").partition(" ")
        return self.guard.create(
            PastMeetingParticipant(
                past_meeting_uid=past_meeting.uid,
                identity_key=key,
                registrant_uid=registrant.uid if registrant else None,
                email=registrant.email if registrant else obj.participant.email,
                first_name=first,
                last_name=last,
                is_invited=registrant is not None and registrant.covers(past_meeting.occurrence_id),
            )
        )

    def _registrant(self, meeting: Meeting, participant: Participant) -> Registrant | None:
        """Registrant behind a participant, by platform registrant id, then by email."""
        if participant.registrant_id:
            registrant = self.session.exec(
                select(Registrant).where(
                    Registrant.meeting_uid == meeting.uid,
                    Registrant.platform_registrant_id == participant.registrant_id,
                )
            ).first()
            if registrant is not None:
                return registrant
        if not participant.email:
            return None
        return self.session.exec(
            select(Registrant).where(
                Registrant.meeting_uid == meeting.uid,
                Registrant.email == participant.email.strip().lower(),
            )
        ).first()

    def _mark_attended(self, participant: PastMeetingParticipant) -> None:
        if participant.is_attended:
            return

        def attend(p):
            p.is_attended = True

        self.guard.touch(participant, attend)
        if participant.registrant_uid is not None:
            registrant = self.session.get(Registrant, participant.registrant_uid)
            if registrant is not None:
                registrant.attended_occurrence_count += 1
                self.session.add(registrant)

    def _participant_joined(self, meeting, past_meeting, obj: ParticipantObject, envelope) -> None:
        participant = self._participant(meeting, past_meeting, obj)
        if participant is None:
            return
        self._mark_attended(participant)

        joined = obj.participant.join_time
        joined = as_utc(joined) if joined else self._event_time(envelope)
        intervals = self.session.exec(
            select(ParticipantSession).where(ParticipantSession.participant_uid == participant.uid)
        ).all()
        if any(as_utc(i.join_time) == joined for i in intervals if i.join_time):
            return
        self.session.add(
            ParticipantSession(
                participant_uid=participant.uid,
                provider_participant_id=obj.participant.id,
                join_time=joined,
            )
        )
        self.session.flush()

    def _participant_left(self, meeting, past_meeting, obj: ParticipantObject, envelope) -> None:
        participant = self._participant(meeting, past_meeting, obj)
        if participant is None:
            return
        # Leaving proves presence; attendance is only ever set
        self._mark_attended(participant)

        left = obj.participant.leave_time
        left = as_utc(left) if left else self._event_time(envelope)
        intervals = sorted(
            self.session.exec(
                select(ParticipantSession).where(
                    ParticipantSession.participant_uid == participant.uid
                )
            ).all(),
            key=lambda i: as_utc(i.join_time or i.leave_time),
        )
        if any(i.leave_time and as_utc(i.leave_time) == left for i in intervals):
            return
        open_interval = next(
            (
                i
                for i in reversed(intervals)
                if i.leave_time is None and (i.join_time is None or as_utc(i.join_time) <= left)
            ),
            None,
        )
        if open_interval is not None:
            open_interval.leave_time = left
            self.session.add(open_interval)
            return

        joined = as_utc(obj.participant.join_time) if obj.participant.join_time else None
        if joined is None and obj.participant.duration is not None:
            joined = left - timedelta(seconds=obj.participant.duration)
        self.session.add(
            ParticipantSession(
                participant_uid=participant.uid,
                provider_participant_id=obj.participant.id,
                join_time=joined,
                leave_time=left,
            )
        )
        self.session.flush()

    # ── Enrichment ───────────────────────────────────────────────────────

    def _artifacts(self, meeting, past_meeting, obj: RecordingObject, envelope) -> None:
        known = set(
            self.session.exec(
                select(PastMeetingArtifact.provider_artifact_id).where(
                    PastMeetingArtifact.past_meeting_uid == past_meeting.uid
                )
            ).all()
        )
        for file in obj.recording_files:
            if file.id in known:
                continue
            is_transcript = (
                envelope.kind == WebhookEventKind.TRANSCRIPT_COMPLETED
                or (file.file_type or "").upper() in TRANSCRIPT_FILE_TYPES
            )
            self.session.add(
                PastMeetingArtifact(
                    past_meeting_uid=past_meeting.uid,
                    provider_artifact_id=file.id,
                    kind="transcript" if is_transcript else "recording",
                    file_type=file.file_type,
                    file_size=file.file_size,
                    download_url=file.download_url,
                    play_url=file.play_url,
                    recording_start=file.recording_start,
                    recording_end=file.recording_end,
                )
            )
            known.add(file.id)
        self.session.flush()

    def _summary(self, meeting, past_meeting, obj: SummaryObject, envelope) -> None:
        content = obj.summary
        raw = {
            "summary_title": content.summary_title,
            "summary_overview": content.summary_overview,
            "summary_details": content.details_text(),
            "next_steps": "\n".join(content.next_steps) or None,
            "doc_url": content.summary_doc_url,
            "summary_start_time": content.summary_start_time,
            "summary_end_time": content.summary_end_time,
        }
        summary = self.session.exec(
            select(PastMeetingSummary).where(
                PastMeetingSummary.past_meeting_uid == past_meeting.uid,
                PastMeetingSummary.platform == meeting.platform,
            )
        ).first()
        if summary is None:
            self.guard.create(
                PastMeetingSummary(
                    past_meeting_uid=past_meeting.uid,
                    platform=meeting.platform,
                    requires_approval=meeting.ai_summary_require_approval,
                    **raw,
                )
            )
            return

        def overwrite_raw(s):
            for key, value in raw.items():
                setattr(s, key, value)

        self.guard.touch(summary, overwrite_raw)

