"""Occurrence state for recurring meetings.

Occurrences themselves are derived from the recurrence rule and are not
stored. What is stored is the per-occurrence state that cannot be
derived: cancellation, individual edits and response counters. A row is
keyed by (meeting_uid, occurrence_id), where the occurrence id is a token
computed from the nominal start time, so a row survives re-expansion of
the rule as long as that start time stays on the grid.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlmodel import Field, SQLModel


class OccurrenceState(SQLModel, table=True):
    """Stored overrides and counters for one occurrence.

    Attributes:
        meeting_uid: The meeting the occurrence belongs to.
        occurrence_id: Token derived from the nominal start time.
        is_cancelled: The occurrence was cancelled individually.
        cancelled_at: When it was cancelled.
        start_time: Rescheduled start, if the occurrence was edited.
        duration: Edited duration in minutes.
        title: Edited title.
        description: Edited description.
        accepted_count: Registrants whose effective RSVP is "accepted".
        declined_count: Registrants whose effective RSVP is "declined".
        maybe_count: Registrants whose effective RSVP is "maybe".
    """
    meeting_uid: UUID = Field(foreign_key="meeting.uid", primary_key=True)
    occurrence_id: str = Field(primary_key=True)
    is_cancelled: bool = False
    cancelled_at: datetime | None = None
    start_time: datetime | None = None
    duration: int | None = None
    title: str | None = None
    description: str | None = None
    accepted_count: int = 0
    declined_count: int = 0
    maybe_count: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_modified(self) -> bool:
        return any(
            value is not None
            for value in (self.start_time, self.duration, self.title, self.description)
        )

    @property
    def is_override(self) -> bool:
        return self.is_cancelled or self.is_modified


class Occurrence(SQLModel):
    """Resolved view of one occurrence: expansion plus stored state."""
    occurrence_id: str
    nominal_start_time: datetime
    start_time: datetime
    duration: int
    title: str
    description: str = ""
    status: str = "available"  # "available" or "cancelled"
    is_modified: bool = False
    registrant_count: int = 0
    response_count_yes: int = 0
    response_count_no: int = 0
    response_count_maybe: int = 0

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


class OccurrenceUpdate(SQLModel):
    """Individual edit of one occurrence."""
    start_time: datetime | None = None
    duration: int | None = Field(default=None, ge=0, le=600)
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
