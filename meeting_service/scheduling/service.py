"""Meeting lifecycle orchestration.

MeetingLifecycleService is what the routes call. Each mutating method is
one transaction over a root entity and its dependent rows, guarded by the
entity's version. Conferencing-platform calls happen here, on the
client-driven path only, and a platform failure rolls the transaction
back before it is surfaced as a TransientError.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager, nullcontext
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from meeting_service.core.clock import as_utc, utcnow
from meeting_service.core.concurrency import ConcurrencyGuard, KeyedLocks, locks, parse_version
from meeting_service.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from meeting_service.models.artifact import Attachment, AttachmentCreate, PastMeetingArtifact
from meeting_service.models.meeting import (
    Meeting,
    MeetingCreate,
    MeetingSettings,
    MeetingSettingsUpdate,
    MeetingUpdate,
)
from meeting_service.models.occurrence import Occurrence, OccurrenceUpdate
from meeting_service.models.participant import (
    ParticipantSession,
    ParticipantUpdate,
    PastMeetingParticipant,
)
from meeting_service.models.past_meeting import (
    PastMeeting,
    PastMeetingCreate,
    PastMeetingRead,
    PastMeetingSession,
)
from meeting_service.models.registrant import Registrant, RegistrantCreate, RegistrantUpdate
from meeting_service.models.rsvp import RSVP, RSVPCreate, RSVPOutcome
from meeting_service.models.summary import PastMeetingSummary, SummaryUpdate
from meeting_service.providers.base import ProviderRegistry
from meeting_service.scheduling.notifications import LoggingNotifier, Notifier
from meeting_service.scheduling.occurrences import OccurrenceStore
from meeting_service.scheduling.past_meetings import PastMeetingStore
from meeting_service.scheduling.recurrence import check_timezone, occurrence_id, validate_rule
from meeting_service.scheduling.rsvp import RSVPResolver

logger = logging.getLogger(__name__)

# Meeting fields whose change moves occurrences around
SCHEDULE_FIELDS = {"start_time", "duration", "timezone", "recurrence"}

# Meeting fields an update may clear
NULLABLE_FIELDS = {"recurrence", "meeting_type", "artifact_visibility"}


def _normalize_start(value: datetime) -> datetime:
    # Occurrence ids have second precision
    return as_utc(value).replace(microsecond=0)


class MeetingLifecycleService:
    def __init__(
        self,
        session: Session,
        providers: ProviderRegistry,
        notifier: Notifier | None = None,
        key_locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.providers = providers
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.guard = ConcurrencyGuard(session)
        self.occurrences = OccurrenceStore(session, clock)
        self.rsvps = RSVPResolver(session, self.occurrences, key_locks or locks, clock)
        self.past_meetings = PastMeetingStore(session, self.occurrences)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # ── Meetings ─────────────────────────────────────────────────────────

    def create_meeting(self, data: MeetingCreate, caller: str | None = None) -> Meeting:
        """Schedule a meeting on its platform and store it.

        The platform meeting is created first; if storing it fails the
        platform meeting is deleted again.
        """
        if data.recurrence is not None:
            validate_rule(data.recurrence)
        check_timezone(data.timezone)
        provider = self.providers.get(data.platform)

        meeting = Meeting(
            **data.model_dump(exclude={"recurrence", "committees", "organizers", "start_time"}),
            start_time=_normalize_start(data.start_time),
            recurrence=(
                data.recurrence.model_dump(mode="json", exclude_none=True)
                if data.recurrence
                else None
            ),
            committees=[c.model_dump() for c in data.committees],
            created_by=caller,
        )
        remote = provider.create_meeting(meeting)
        meeting.platform_meeting_id = remote.platform_meeting_id
        meeting.join_url = remote.join_url

        organizers = data.organizers or ([caller] if caller else [])
        try:
            with self._transaction():
                self.guard.create(meeting)
                self.guard.create(MeetingSettings(meeting_uid=meeting.uid, organizers=organizers))
        except Exception:
            logger.warning(
                f"Storing meeting failed, removing platform meeting {meeting.platform_meeting_id}"
            )
            provider.delete_meeting(meeting)
            raise
        self.session.refresh(meeting)
        logger.info(
            f"Created meeting {meeting.uid} ({meeting.platform} {meeting.platform_meeting_id})"
        )
        return meeting

    def get_meeting(self, meeting_uid: UUID, include_deleted: bool = False) -> Meeting:
        meeting = self.session.get(Meeting, meeting_uid)
        if meeting is None or (meeting.is_deleted and not include_deleted):
            raise NotFoundError(f"Meeting {meeting_uid} not found")
        return meeting

    def list_meetings(self, project_uid: str | None = None) -> list[Meeting]:
        statement = select(Meeting).where(Meeting.deleted_at == None)  # noqa: E711
        if project_uid:
            statement = statement.where(Meeting.project_uid == project_uid)
        return list(self.session.exec(statement.order_by(Meeting.start_time)).all())

    def update_meeting(
        self, meeting_uid: UUID, data: MeetingUpdate, expected_version: str | int | None
    ) -> Meeting:
        """Apply a partial update under the caller's version.

        Changing the schedule re-settles RSVP counters, since occurrences
        may have appeared or disappeared. Cancelled and edited occurrences
        keep their overrides.
        """
        meeting = self.get_meeting(meeting_uid)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_FIELDS
        }
        if "recurrence" in changes:
            if data.recurrence is not None:
                validate_rule(data.recurrence)
                changes["recurrence"] = data.recurrence.model_dump(mode="json", exclude_none=True)
        if "committees" in changes:
            changes["committees"] = [c.model_dump() for c in data.committees or []]
        if changes.get("start_time") is not None:
            changes["start_time"] = _normalize_start(data.start_time)
        if changes.get("timezone") is not None:
            check_timezone(changes["timezone"])
        if changes.get("visibility") not in (None, "public", "private"):
            raise ValidationError("visibility must be 'public' or 'private'")

        def apply(m: Meeting) -> None:
            for key, value in changes.items():
                setattr(m, key, value)

        schedule_changed = bool(SCHEDULE_FIELDS & changes.keys())
        held = self.rsvps.hold_registrants(meeting) if schedule_changed else nullcontext([])
        with held as registrants, self._transaction():
            self.guard.mutate(meeting, expected_version, apply)
            changed = self.rsvps.resettle(meeting, registrants) if schedule_changed else 0
            self.providers.get(meeting.platform).update_meeting(meeting)

        if schedule_changed:
            logger.info(f"Schedule of meeting {meeting.uid} changed, {changed} counters re-settled")
        self.session.refresh(meeting)
        return meeting

    def delete_meeting(self, meeting_uid: UUID, expected_version: str | int | None) -> None:
        """Cancel a meeting. History (past meetings) is kept."""
        meeting = self.get_meeting(meeting_uid)

        def cancel(m: Meeting) -> None:
            m.deleted_at = self.clock()

        with self._transaction():
            self.guard.mutate(meeting, expected_version, cancel)
            self.providers.get(meeting.platform).delete_meeting(meeting)
        logger.info(f"Cancelled meeting {meeting.uid}")
        self.notifier.meeting_cancelled(meeting, self.list_registrants(meeting_uid, include_deleted=True))

    def get_settings(self, meeting_uid: UUID) -> MeetingSettings:
        self.get_meeting(meeting_uid)
        meeting_settings = self.session.get(MeetingSettings, meeting_uid)
        if meeting_settings is None:
            raise NotFoundError(f"Settings for meeting {meeting_uid} not found")
        return meeting_settings

    def update_settings(
        self, meeting_uid: UUID, data: MeetingSettingsUpdate, expected_version: str | int | None
    ) -> MeetingSettings:
        meeting_settings = self.get_settings(meeting_uid)

        def apply(s: MeetingSettings) -> None:
            s.organizers = list(dict.fromkeys(data.organizers))

        with self._transaction():
            self.guard.mutate(meeting_settings, expected_version, apply)
        self.session.refresh(meeting_settings)
        return meeting_settings

    # ── Occurrences ──────────────────────────────────────────────────────

    def list_occurrences(self, meeting_uid: UUID, include_cancelled: bool = True) -> list[Occurrence]:
        meeting = self.get_meeting(meeting_uid)
        return self.occurrences.resolve(meeting, include_cancelled=include_cancelled)

    def get_occurrence(self, meeting_uid: UUID, occurrence_id_: str) -> Occurrence:
        return self.occurrences.get(self.get_meeting(meeting_uid), occurrence_id_)

    def _check_version(self, entity, expected_version: str | int | None) -> None:
        expected = parse_version(expected_version)
        if expected is not None and expected != entity.version:
            raise ConflictError(
                f"{type(entity).__name__} has already been modified", precondition_failed=True
            )

    def cancel_occurrence(
        self, meeting_uid: UUID, occurrence_id_: str, expected_version: str | int | None = None
    ) -> Occurrence:
        """Cancel one occurrence. Cancelling twice is not an error.

        The version precondition is optional here; when given it is checked
        against the meeting.
        """
        meeting = self.get_meeting(meeting_uid)
        self._check_version(meeting, expected_version)
        with self._transaction():
            _, changed = self.occurrences.cancel(meeting, occurrence_id_)
            if changed:
                self.guard.touch(meeting, lambda m: None)
                self.providers.get(meeting.platform).delete_meeting(meeting, occurrence_id_)
        if changed:
            registrants = [
                r for r in self.list_registrants(meeting_uid) if r.covers(occurrence_id_)
            ]
            self.notifier.occurrence_cancelled(meeting, occurrence_id_, registrants)
        return self.occurrences.get(meeting, occurrence_id_)

    def edit_occurrence(
        self,
        meeting_uid: UUID,
        occurrence_id_: str,
        data: OccurrenceUpdate,
        expected_version: str | int | None = None,
    ) -> Occurrence:
        meeting = self.get_meeting(meeting_uid)
        self._check_version(meeting, expected_version)
        with self._transaction():
            occurrence = self.occurrences.edit(meeting, occurrence_id_, data)
            self.guard.touch(meeting, lambda m: None)
        return occurrence

    # ── Registrants ──────────────────────────────────────────────────────

    def _registrant(self, meeting_uid: UUID, registrant_uid: UUID) -> Registrant:
        registrant = self.session.get(Registrant, registrant_uid)
        if registrant is None or registrant.meeting_uid != meeting_uid:
            raise NotFoundError(f"Registrant {registrant_uid} not found")
        return registrant

    def _check_target(self, meeting: Meeting, occurrence_id_: str | None) -> None:
        if occurrence_id_:
            try:
                self.occurrences.get(meeting, occurrence_id_)
            except NotFoundError:
                raise ValidationError(f"Occurrence {occurrence_id_} is not part of this meeting") from None

    def create_registrant(self, meeting_uid: UUID, data: RegistrantCreate) -> Registrant:
        """Register a person directly and register them on the platform.

        Raises:
            ConflictError: If the email is already registered for the meeting.
        """
        meeting = self.get_meeting(meeting_uid)
        self._check_target(meeting, data.occurrence_id)
        registrant = Registrant(
            **data.model_dump(exclude={"email"}),
            email=str(data.email).lower(),
            meeting_uid=meeting.uid,
            type="direct",
        )
        with self._transaction():
            self.guard.create(registrant)
            remote = self.providers.get(meeting.platform).create_registrant(meeting, registrant)
            registrant.platform_registrant_id = remote.platform_registrant_id
            registrant.join_url = remote.join_url
            registrant.invites_sent_count = 1
            registrant.last_invite_received_time = self.clock()
            self.session.add(registrant)
        self.session.refresh(registrant)
        self.notifier.registrant_invited(meeting, registrant)
        return registrant

    def get_registrant(self, meeting_uid: UUID, registrant_uid: UUID) -> Registrant:
        self.get_meeting(meeting_uid)
        return self._registrant(meeting_uid, registrant_uid)

    def list_registrants(self, meeting_uid: UUID, include_deleted: bool = False) -> list[Registrant]:
        self.get_meeting(meeting_uid, include_deleted=include_deleted)
        return list(
            self.session.exec(
                select(Registrant)
                .where(Registrant.meeting_uid == meeting_uid)
                .order_by(Registrant.created_at)
            ).all()
        )

    def update_registrant(
        self,
        meeting_uid: UUID,
        registrant_uid: UUID,
        data: RegistrantUpdate,
        expected_version: str | int | None,
    ) -> Registrant:
        meeting = self.get_meeting(meeting_uid)
        registrant = self._registrant(meeting_uid, registrant_uid)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"]).lower()
        if "occurrence_id" in changes:
            changes["occurrence_id"] = changes["occurrence_id"] or ""
            self._check_target(meeting, changes["occurrence_id"])

        def apply(r: Registrant) -> None:
            for key, value in changes.items():
                setattr(r, key, value)

        with self.rsvps.locks.hold(f"rsvp:{registrant.uid}"), self._transaction():
            self.guard.mutate(registrant, expected_version, apply)
            remote = self.providers.get(meeting.platform).update_registrant(meeting, registrant)
            registrant.platform_registrant_id = remote.platform_registrant_id
            registrant.join_url = remote.join_url or registrant.join_url
            self.session.add(registrant)
            if "occurrence_id" in changes:
                active = [o.occurrence_id for o in self.occurrences.active(meeting)]
                self.rsvps.settle(meeting, registrant, active)
        self.session.refresh(registrant)
        return registrant

    def delete_registrant(
        self, meeting_uid: UUID, registrant_uid: UUID, expected_version: str | int | None
    ) -> None:
        """Remove a direct registrant and withdraw their RSVPs from the counters.

        Raises:
            ValidationError: For committee registrants, which follow
                committee membership instead.
        """
        meeting = self.get_meeting(meeting_uid)
        registrant = self._registrant(meeting_uid, registrant_uid)
        if registrant.type == "committee":
            raise ValidationError("Committee registrants cannot be removed individually")
        with self.rsvps.locks.hold(f"rsvp:{registrant.uid}"), self._transaction():
            self.rsvps.withdraw(meeting, registrant)
            self.guard.delete(registrant, expected_version)
            self.providers.get(meeting.platform).delete_registrant(meeting, registrant)
        logger.info(f"Removed registrant {registrant_uid} from meeting {meeting_uid}")
        self.notifier.registrant_removed(meeting, registrant)

    def resend_invitation(self, meeting_uid: UUID, registrant_uid: UUID) -> Registrant:
        meeting = self.get_meeting(meeting_uid)
        registrant = self._registrant(meeting_uid, registrant_uid)

        def sent(r: Registrant) -> None:
            r.invites_sent_count += 1
            r.last_invite_received_time = self.clock()

        with self._transaction():
            self.guard.touch(registrant, sent)
        self.session.refresh(registrant)
        self.notifier.invitation_resent(meeting, registrant)
        return registrant

    # ── RSVPs ────────────────────────────────────────────────────────────

    def submit_rsvp(self, meeting_uid: UUID, data: RSVPCreate, caller: str | None = None) -> RSVPOutcome:
        meeting = self.get_meeting(meeting_uid)
        registrant = self.rsvps.resolve_registrant(meeting, data, caller)
        try:
            return self.rsvps.apply(meeting, registrant, data, submitted_by=caller)
        except Exception:
            self.session.rollback()
            raise

    def list_rsvps(self, meeting_uid: UUID) -> list[RSVP]:
        return self.rsvps.list_for_meeting(self.get_meeting(meeting_uid))

    def get_join_link(
        self,
        meeting_uid: UUID,
        caller: str | None = None,
        registrant_uid: UUID | None = None,
    ) -> str | None:
        """Join link for the caller (or a given registrant).

        Raises:
            NotFoundError: If the meeting is restricted and the person is
                not registered.
        """
        meeting = self.get_meeting(meeting_uid)
        registrant = None
        if registrant_uid is not None:
            registrant = self._registrant(meeting_uid, registrant_uid)
        elif caller:
            registrant = self.session.exec(
                select(Registrant).where(
                    Registrant.meeting_uid == meeting_uid, Registrant.username == caller
                )
            ).first()
        if meeting.restricted and registrant is None:
            raise NotFoundError("Not registered for this restricted meeting")
        return self.providers.get(meeting.platform).get_join_link(meeting, registrant)

    # ── Past meetings ────────────────────────────────────────────────────

    def _past_meeting(self, past_meeting_uid: UUID) -> PastMeeting:
        past_meeting = self.session.get(PastMeeting, past_meeting_uid)
        if past_meeting is None:
            raise NotFoundError(f"Past meeting {past_meeting_uid} not found")
        return past_meeting

    def get_past_meeting(self, past_meeting_uid: UUID) -> PastMeetingRead:
        return self.past_meetings.read(self._past_meeting(past_meeting_uid))

    def list_past_meetings(
        self, meeting_uid: UUID | None = None, project_uid: str | None = None
    ) -> list[PastMeetingRead]:
        statement = select(PastMeeting)
        if meeting_uid is not None:
            statement = statement.where(PastMeeting.meeting_uid == meeting_uid)
        if project_uid:
            statement = statement.where(PastMeeting.project_uid == project_uid)
        rows = self.session.exec(statement.order_by(PastMeeting.scheduled_start_time)).all()
        return [self.past_meetings.read(row) for row in rows]

    def create_past_meeting(self, data: PastMeetingCreate) -> PastMeetingRead:
        """Record a held occurrence by hand.

        Uses the same (meeting, occurrence) key as webhook reconciliation,
        so a later webhook for the occurrence lands on this record.

        Raises:
            ConflictError: If the occurrence already has a past meeting.
        """
        meeting = self.get_meeting(data.meeting_uid, include_deleted=True)
        occ_id = data.occurrence_id
        if not occ_id:
            if data.start_time is not None:
                occ_id = self.occurrences.nearest(meeting, data.start_time)
                occ_id = occ_id or occurrence_id(data.start_time)
            elif meeting.recurrence_rule is None:
                occ_id = occurrence_id(meeting.start_time)
            else:
                raise ValidationError("occurrence_id or start_time is required for a recurring meeting")

        if self.past_meetings.find(meeting.uid, occ_id) is not None:
            raise ConflictError(f"Occurrence {occ_id} already has a past meeting")
        with self._transaction():
            past_meeting = self.past_meetings.create(meeting, occ_id, source="manual")
            if data.start_time is not None or data.end_time is not None:
                self.session.add(
                    PastMeetingSession(
                        past_meeting_uid=past_meeting.uid,
                        start_time=as_utc(data.start_time),
                        end_time=as_utc(data.end_time),
                    )
                )
        self.session.refresh(past_meeting)
        return self.past_meetings.read(past_meeting)

    def delete_past_meeting(self, past_meeting_uid: UUID, expected_version: str | int | None) -> None:
        past_meeting = self._past_meeting(past_meeting_uid)
        with self._transaction():
            participants = self.session.exec(
                select(PastMeetingParticipant).where(
                    PastMeetingParticipant.past_meeting_uid == past_meeting.uid
                )
            ).all()
            for participant in participants:
                for interval in self.session.exec(
                    select(ParticipantSession).where(
                        ParticipantSession.participant_uid == participant.uid
                    )
                ).all():
                    self.session.delete(interval)
                self.session.delete(participant)
            for model in (PastMeetingSession, PastMeetingSummary, PastMeetingArtifact, Attachment):
                for row in self.session.exec(
                    select(model).where(model.past_meeting_uid == past_meeting.uid)
                ).all():
                    self.session.delete(row)
            self.session.flush()
            self.guard.delete(past_meeting, expected_version)
        logger.info(f"Deleted past meeting {past_meeting_uid}")

    # ── Participants ─────────────────────────────────────────────────────

    def list_participants(self, past_meeting_uid: UUID) -> list[PastMeetingParticipant]:
        self._past_meeting(past_meeting_uid)
        return list(
            self.session.exec(
                select(PastMeetingParticipant)
                .where(PastMeetingParticipant.past_meeting_uid == past_meeting_uid)
                .order_by(PastMeetingParticipant.identity_key)
            ).all()
        )

    def get_participant(self, past_meeting_uid: UUID, participant_uid: UUID) -> PastMeetingParticipant:
        participant = self.session.get(PastMeetingParticipant, participant_uid)
        if participant is None or participant.past_meeting_uid != past_meeting_uid:
            raise NotFoundError(f"Participant {participant_uid} not found")
        return participant

    def update_participant(
        self,
        past_meeting_uid: UUID,
        participant_uid: UUID,
        data: ParticipantUpdate,
        expected_version: str | int | None,
    ) -> PastMeetingParticipant:
        participant = self.get_participant(past_meeting_uid, participant_uid)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        def apply(p: PastMeetingParticipant) -> None:
            for key, value in changes.items():
                setattr(p, key, value)

        with self._transaction():
            self.guard.mutate(participant, expected_version, apply)
        self.session.refresh(participant)
        return participant

    # ── Summaries ────────────────────────────────────────────────────────

    def list_summaries(self, past_meeting_uid: UUID) -> list[PastMeetingSummary]:
        self._past_meeting(past_meeting_uid)
        return list(
            self.session.exec(
                select(PastMeetingSummary).where(
                    PastMeetingSummary.past_meeting_uid == past_meeting_uid
                )
            ).all()
        )

    def get_summary(self, past_meeting_uid: UUID, summary_uid: UUID) -> PastMeetingSummary:
        summary = self.session.get(PastMeetingSummary, summary_uid)
        if summary is None or summary.past_meeting_uid != past_meeting_uid:
            raise NotFoundError(f"Summary {summary_uid} not found")
        return summary

    def update_summary(
        self,
        past_meeting_uid: UUID,
        summary_uid: UUID,
        data: SummaryUpdate,
        expected_version: str | int | None,
    ) -> PastMeetingSummary:
        """Edit the overlay of a summary. The raw content is left as delivered."""
        summary = self.get_summary(past_meeting_uid, summary_uid)
        changes = data.model_dump(exclude_unset=True)

        def apply(s: PastMeetingSummary) -> None:
            for key, value in changes.items():
                setattr(s, key, value)

        with self._transaction():
            self.guard.mutate(summary, expected_version, apply)
        self.session.refresh(summary)
        return summary

    # ── Attachments ──────────────────────────────────────────────────────

    def add_attachment(
        self,
        data: AttachmentCreate,
        meeting_uid: UUID | None = None,
        past_meeting_uid: UUID | None = None,
        caller: str | None = None,
    ) -> Attachment:
        """Store attachment metadata for a meeting or a past meeting."""
        if meeting_uid is not None:
            self.get_meeting(meeting_uid)
        else:
            self._past_meeting(past_meeting_uid)
        attachment = Attachment(
            **data.model_dump(),
            meeting_uid=meeting_uid,
            past_meeting_uid=past_meeting_uid,
            uploaded_by=caller,
        )
        with self._transaction():
            self.session.add(attachment)
        self.session.refresh(attachment)
        return attachment

    def list_attachments(
        self, meeting_uid: UUID | None = None, past_meeting_uid: UUID | None = None
    ) -> list[Attachment]:
        if meeting_uid is not None:
            self.get_meeting(meeting_uid)
            statement = select(Attachment).where(Attachment.meeting_uid == meeting_uid)
        else:
            self._past_meeting(past_meeting_uid)
            statement = select(Attachment).where(Attachment.past_meeting_uid == past_meeting_uid)
        return list(self.session.exec(statement.order_by(Attachment.created_at)).all())

    def delete_attachment(
        self,
        attachment_uid: UUID,
        meeting_uid: UUID | None = None,
        past_meeting_uid: UUID | None = None,
    ) -> None:
        attachment = self.session.get(Attachment, attachment_uid)
        owner = None
        if attachment is not None:
            owner = (
                attachment.meeting_uid if meeting_uid is not None else attachment.past_meeting_uid
            )
        if owner is None or owner != (meeting_uid or past_meeting_uid):
            raise NotFoundError(f"Attachment {attachment_uid} not found")
        with self._transaction():
            self.session.delete(attachment)
