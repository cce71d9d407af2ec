"""Past meeting records, shared by webhook reconciliation and manual entry.

Both paths go through ``PastMeetingStore.open``, which returns the one
PastMeeting for a (meeting, occurrence) pair and creates it with a
snapshot of the meeting if it does not exist yet.
"""

import logging
from datetime import timedelta

from sqlmodel import Session, select

from meeting_service.core.clock import as_utc
from meeting_service.core.concurrency import ConcurrencyGuard
from meeting_service.core.errors import ConflictError, NotFoundError
from meeting_service.models.artifact import PastMeetingArtifact
from meeting_service.models.meeting import Meeting
from meeting_service.models.participant import PastMeetingParticipant
from meeting_service.models.past_meeting import (
    PastMeeting,
    PastMeetingRead,
    PastMeetingSession,
    PastMeetingState,
)
from meeting_service.models.registrant import Registrant
from meeting_service.models.summary import PastMeetingSummary
from meeting_service.scheduling.occurrences import OccurrenceStore
from meeting_service.scheduling.recurrence import occurrence_start

logger = logging.getLogger(__name__)


class PastMeetingStore:
    def __init__(self, session: Session, occurrences: OccurrenceStore):
        self.session = session
        self.occurrences = occurrences
        self.guard = ConcurrencyGuard(session)

    def find(self, meeting_uid, occurrence_id: str) -> PastMeeting | None:
        return self.session.exec(
            select(PastMeeting).where(
                PastMeeting.meeting_uid == meeting_uid,
                PastMeeting.occurrence_id == occurrence_id,
            )
        ).first()

    def snapshot(self, meeting: Meeting, occurrence_id: str, source: str) -> PastMeeting:
        """Copy the meeting as it is now into a new (unsaved) PastMeeting."""
        try:
            occurrence = self.occurrences.get(meeting, occurrence_id)
            start, duration = occurrence.start_time, occurrence.duration
            title, description = occurrence.title, occurrence.description
        except NotFoundError:
            # Held off the schedule; keep the meeting defaults
            start, duration = occurrence_start(occurrence_id), meeting.duration
            title, description = meeting.title, meeting.description
        return PastMeeting(
            meeting_uid=meeting.uid,
            occurrence_id=occurrence_id,
            project_uid=meeting.project_uid,
            title=title,
            description=description,
            timezone=meeting.timezone,
            duration=duration,
            scheduled_start_time=start,
            scheduled_end_time=start + timedelta(minutes=duration),
            visibility=meeting.visibility,
            restricted=meeting.restricted,
            committees=list(meeting.committees or []),
            platform=meeting.platform,
            platform_meeting_id=meeting.platform_meeting_id,
            meeting_type=meeting.meeting_type,
            recording_enabled=meeting.recording_enabled,
            transcript_enabled=meeting.transcript_enabled,
            artifact_visibility=meeting.artifact_visibility,
            source=source,
        )

    def create(self, meeting: Meeting, occurrence_id: str, source: str) -> PastMeeting:
        """Insert the past meeting and its invited participants.

        Raises:
            ConflictError: If the pair already has a past meeting.
        """
        past_meeting = self.guard.create(self.snapshot(meeting, occurrence_id, source))
        invited = self.seed_invited(meeting, past_meeting)
        logger.info(
            f"Created past meeting {past_meeting.uid} for meeting {meeting.uid} "
            f"occurrence {occurrence_id} ({source}, {invited} invited)"
        )
        return past_meeting

    def open(self, meeting: Meeting, occurrence_id: str, source: str = "webhook"):
        """Get or create the past meeting of a pair.

        Returns:
            Tuple of (past meeting, created).
        """
        existing = self.find(meeting.uid, occurrence_id)
        if existing is not None:
            return existing, False
        try:
            return self.create(meeting, occurrence_id, source), True
        except ConflictError:
            # Created concurrently by another worker
            existing = self.find(meeting.uid, occurrence_id)
            if existing is None:
                raise
            return existing, False

    def seed_invited(self, meeting: Meeting, past_meeting: PastMeeting) -> int:
        registrants = self.session.exec(
            select(Registrant).where(Registrant.meeting_uid == meeting.uid)
        ).all()
        count = 0
        for registrant in registrants:
            if not registrant.covers(past_meeting.occurrence_id):
                continue
            self.session.add(
                PastMeetingParticipant(
                    past_meeting_uid=past_meeting.uid,
                    identity_key=registrant.email.lower(),
                    registrant_uid=registrant.uid,
                    email=registrant.email,
                    username=registrant.username,
                    first_name=registrant.first_name,
                    last_name=registrant.last_name,
                    job_title=registrant.job_title,
                    org_name=registrant.org_name,
                    host=registrant.host,
                    is_invited=True,
                )
            )
            count += 1
        self.session.flush()
        return count

    def sessions(self, past_meeting: PastMeeting) -> list[PastMeetingSession]:
        rows = self.session.exec(
            select(PastMeetingSession).where(
                PastMeetingSession.past_meeting_uid == past_meeting.uid
            )
        ).all()
        return sorted(
            rows,
            key=lambda s: as_utc(s.start_time or s.end_time) or as_utc(past_meeting.created_at),
        )

    def state(self, past_meeting: PastMeeting | None) -> PastMeetingState:
        """Derived reconciliation state.

        An open session wins over everything else, so a restart moves a
        closed or enriched record back to OPEN.
        """
        if past_meeting is None:
            return PastMeetingState.NO_RECORD
        sessions = self.sessions(past_meeting)
        if any(s.end_time is None for s in sessions):
            return PastMeetingState.OPEN
        enriched = self.session.exec(
            select(PastMeetingArtifact.uid).where(
                PastMeetingArtifact.past_meeting_uid == past_meeting.uid
            )
        ).first() or self.session.exec(
            select(PastMeetingSummary.uid).where(
                PastMeetingSummary.past_meeting_uid == past_meeting.uid
            )
        ).first()
        if enriched:
            return PastMeetingState.ENRICHED
        return PastMeetingState.CLOSED

    def read(self, past_meeting: PastMeeting) -> PastMeetingRead:
        fields = past_meeting.model_dump(
            exclude={"created_at", "updated_at", "recording_enabled", "transcript_enabled"}
        )
        return PastMeetingRead(
            **fields,
            state=self.state(past_meeting),
            sessions=self.sessions(past_meeting),
        )
