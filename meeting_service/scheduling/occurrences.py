"""Resolved occurrence views and per-occurrence overrides.

The store combines the raw expansion of a meeting's rule with the
OccurrenceState rows (cancellations, edits, response counters). Overrides
are never deleted: when a rule edit stops producing an occurrence id its
state row is kept, but it drops out of the resolved view.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from itertools import islice

from sqlmodel import Session, select

from meeting_service.core.clock import as_utc, utcnow
from meeting_service.core.config import settings
from meeting_service.core.errors import NotFoundError, ValidationError
from meeting_service.models.meeting import Meeting
from meeting_service.models.occurrence import Occurrence, OccurrenceState, OccurrenceUpdate
from meeting_service.models.registrant import Registrant
from meeting_service.scheduling.recurrence import (
    DAILY,
    WEEKLY,
    expand,
    iter_occurrences,
    occurrence_id,
    occurrence_start,
)

logger = logging.getLogger(__name__)


def period_length(meeting: Meeting) -> timedelta:
    """Longest gap between two consecutive nominal occurrences."""
    rule = meeting.recurrence_rule
    if rule is None:
        return timedelta(days=1)
    if rule.type == DAILY:
        return timedelta(days=rule.repeat_interval)
    if rule.type == WEEKLY:
        return timedelta(weeks=rule.repeat_interval)
    return timedelta(days=31 * rule.repeat_interval)


class OccurrenceStore:
    """Occurrence views and overrides for meetings in one session."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    # ── Overrides ────────────────────────────────────────────────────────

    def get_state(self, meeting_uid, occurrence_id_: str) -> OccurrenceState | None:
        return self.session.get(OccurrenceState, (meeting_uid, occurrence_id_))

    def states(self, meeting_uid) -> dict[str, OccurrenceState]:
        rows = self.session.exec(
            select(OccurrenceState).where(OccurrenceState.meeting_uid == meeting_uid)
        ).all()
        return {row.occurrence_id: row for row in rows}

    def ensure_state(self, meeting_uid, occurrence_id_: str) -> OccurrenceState:
        """Return the state row for an occurrence, creating an empty one."""
        state = self.get_state(meeting_uid, occurrence_id_)
        if state is None:
            state = OccurrenceState(meeting_uid=meeting_uid, occurrence_id=occurrence_id_)
            self.session.add(state)
            self.session.flush()
        return state

    # ── Resolution ───────────────────────────────────────────────────────

    def window(self, meeting: Meeting, horizon: datetime | None = None) -> tuple[datetime, datetime]:
        """Start and end of the "present and future" window for a meeting.

        An occurrence that already started is still relevant until it has
        been over for the relevance buffer.
        """
        now = self.clock()
        lookback = timedelta(
            minutes=meeting.duration + settings.occurrence_relevance_buffer_minutes
        )
        if horizon is None:
            base = max(now, as_utc(meeting.start_time))
            horizon = base + timedelta(days=settings.occurrence_horizon_days)
        return now - lookback, as_utc(horizon)

    def is_on_grid(self, meeting: Meeting, occurrence_id_: str) -> bool:
        """Whether the current rule produces this occurrence id."""
        nominal = occurrence_start(occurrence_id_)
        first = next(
            iter_occurrences(
                meeting.recurrence_rule, meeting.start_time, meeting.timezone, start=nominal
            ),
            None,
        )
        return first is not None and occurrence_id(first) == occurrence_id_

    def _view(
        self,
        meeting: Meeting,
        nominal: datetime,
        state: OccurrenceState | None,
        registrants: list[Registrant],
    ) -> Occurrence:
        occ_id = occurrence_id(nominal)
        view = Occurrence(
            occurrence_id=occ_id,
            nominal_start_time=nominal,
            start_time=nominal,
            duration=meeting.duration,
            title=meeting.title,
            description=meeting.description,
            registrant_count=sum(1 for r in registrants if r.covers(occ_id)),
        )
        if state is not None:
            if state.start_time is not None:
                view.start_time = as_utc(state.start_time)
            if state.duration is not None:
                view.duration = state.duration
            if state.title is not None:
                view.title = state.title
            if state.description is not None:
                view.description = state.description
            view.is_modified = state.is_modified
            view.status = "cancelled" if state.is_cancelled else "available"
            view.response_count_yes = state.accepted_count
            view.response_count_no = state.declined_count
            view.response_count_maybe = state.maybe_count
        return view

    def _registrants(self, meeting: Meeting) -> list[Registrant]:
        return list(
            self.session.exec(
                select(Registrant).where(Registrant.meeting_uid == meeting.uid)
            ).all()
        )

    def resolve(
        self,
        meeting: Meeting,
        horizon: datetime | None = None,
        include_cancelled: bool = True,
    ) -> list[Occurrence]:
        """Present and future occurrences with overrides applied.

        Args:
            meeting: The meeting to resolve.
            horizon: Inclusive bound on nominal start times; defaults to
                ``occurrence_horizon_days`` past now (or past the first
                occurrence if it lies in the future).
            include_cancelled: Include cancelled occurrences in the result.
        """
        if meeting.is_deleted:
            return []
        start, end = self.window(meeting, horizon)
        starts = expand(
            meeting.recurrence_rule,
            meeting.start_time,
            horizon=end,
            timezone=meeting.timezone,
            limit=settings.max_occurrences,
            start=start,
        )
        states = self.states(meeting.uid)
        registrants = self._registrants(meeting)
        now = self.clock()
        relevance = timedelta(minutes=settings.occurrence_relevance_buffer_minutes)

        occurrences = []
        for nominal in starts:
            view = self._view(meeting, nominal, states.get(occurrence_id(nominal)), registrants)
            ends_at = view.start_time + timedelta(minutes=view.duration)
            if view.start_time < now and ends_at < now - relevance:
                continue
            if view.is_cancelled and not include_cancelled:
                continue
            occurrences.append(view)
        return occurrences

    def active(self, meeting: Meeting, horizon: datetime | None = None) -> list[Occurrence]:
        """Resolved occurrences that are not cancelled."""
        return self.resolve(meeting, horizon, include_cancelled=False)

    def get(self, meeting: Meeting, occurrence_id_: str) -> Occurrence:
        """A single occurrence, past or future, by id.

        Raises:
            NotFoundError: If the current rule does not produce the id.
        """
        try:
            nominal = occurrence_start(occurrence_id_)
        except ValidationError:
            raise NotFoundError(f"Occurrence {occurrence_id_} not found") from None
        if not self.is_on_grid(meeting, occurrence_id_):
            raise NotFoundError(f"Occurrence {occurrence_id_} not found")
        return self._view(
            meeting,
            nominal,
            self.get_state(meeting.uid, occurrence_id_),
            self._registrants(meeting),
        )

    def orphans(self, meeting: Meeting) -> list[OccurrenceState]:
        """Override rows whose occurrence the current rule no longer produces."""
        return [
            state
            for occ_id, state in self.states(meeting.uid).items()
            if state.is_override and not self.is_on_grid(meeting, occ_id)
        ]

    def nearest(self, meeting: Meeting, when: datetime) -> str | None:
        """Id of the occurrence whose start is closest to ``when``.

        Edited start times count as well as nominal ones, so a moved
        occurrence is matched at its new time. Returns None when no
        occurrence lies within one period of ``when``.
        """
        when = as_utc(when)
        span = period_length(meeting)
        candidates: dict[str, datetime] = {}
        starts = iter_occurrences(
            meeting.recurrence_rule, meeting.start_time, meeting.timezone, start=when - span
        )
        for nominal in islice(starts, 64):
            if nominal > when + span:
                break
            candidates[occurrence_id(nominal)] = nominal
        for occ_id, state in self.states(meeting.uid).items():
            if state.start_time is not None:
                candidates[occ_id] = as_utc(state.start_time)
        if not candidates:
            return None
        best = min(candidates, key=lambda occ_id: abs(candidates[occ_id] - when))
        if abs(candidates[best] - when) > span:
            return None
        return best

    # ── Mutations ────────────────────────────────────────────────────────

    def cancel(self, meeting: Meeting, occurrence_id_: str) -> tuple[OccurrenceState, bool]:
        """Mark an occurrence cancelled.

        Returns:
            The state row and whether anything changed. Cancelling an
            already cancelled occurrence is a no-op.
        """
        self.get(meeting, occurrence_id_)
        state = self.ensure_state(meeting.uid, occurrence_id_)
        if state.is_cancelled:
            return state, False
        state.is_cancelled = True
        state.cancelled_at = self.clock()
        state.updated_at = state.cancelled_at
        self.session.add(state)
        self.session.flush()
        logger.info(f"Cancelled occurrence {occurrence_id_} of meeting {meeting.uid}")
        return state, True

    def edit(self, meeting: Meeting, occurrence_id_: str, data: OccurrenceUpdate) -> Occurrence:
        """Merge an edit into the occurrence override; the rule is untouched."""
        self.get(meeting, occurrence_id_)
        state = self.ensure_state(meeting.uid, occurrence_id_)
        if state.is_cancelled:
            raise ValidationError(f"Occurrence {occurrence_id_} is cancelled")
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(state, key, value)
        state.updated_at = self.clock()
        self.session.add(state)
        self.session.flush()
        return self.get(meeting, occurrence_id_)
