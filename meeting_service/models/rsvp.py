"""RSVP models.

Every submitted RSVP is kept as an immutable row so the response history
of a registrant stays auditable. The effective response per
(registrant, occurrence) is materialized separately in
OccurrenceResponse, which is what the occurrence counters are derived
from.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class RSVPResponse(str, Enum):
    ACCEPTED = "accepted"
    MAYBE = "maybe"
    DECLINED = "declined"


class RSVPScope(str, Enum):
    SINGLE = "single"
    ALL = "all"
    THIS_AND_FOLLOWING = "this_and_following"


class RSVP(SQLModel, table=True):
    """A submitted RSVP.

    ``registrant_uid`` is deliberately not a foreign key: the audit trail
    outlives the registrant it was submitted for.
    """
    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_uid: UUID = Field(foreign_key="meeting.uid", index=True)
    registrant_uid: UUID = Field(index=True)
    username: str | None = None
    email: str | None = None
    response: RSVPResponse
    scope: RSVPScope
    occurrence_id: str = ""
    submitted_by: str | None = None
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    # Per-registrant submission order, breaks submitted_at ties
    sequence: int = 0

    def covers(self, occurrence_id: str) -> bool:
        """Whether this RSVP's scope includes the given occurrence."""
        if self.scope == RSVPScope.ALL:
            return True
        if self.scope == RSVPScope.SINGLE:
            return self.occurrence_id == occurrence_id
        return int(occurrence_id) >= int(self.occurrence_id)


class OccurrenceResponse(SQLModel, table=True):
    """The RSVP currently in effect for one registrant and occurrence."""
    __table_args__ = (UniqueConstraint("registrant_uid", "occurrence_id"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_uid: UUID = Field(foreign_key="meeting.uid", index=True)
    registrant_uid: UUID = Field(index=True)
    occurrence_id: str
    rsvp_uid: UUID
    response: RSVPResponse
    submitted_at: datetime


class RSVPCreate(SQLModel):
    """Request body for submitting an RSVP.

    The registrant is identified by ``registrant_uid`` or ``username``;
    with neither, the caller's own identity is used as the username.
    ``submitted_at`` lets a queued or offline submission keep the time it
    was made; it defaults to the time of receipt.
    """
    registrant_uid: UUID | None = None
    username: str | None = None
    response: RSVPResponse
    scope: RSVPScope
    occurrence_id: str = ""
    submitted_at: datetime | None = None


class RSVPOutcome(SQLModel):
    """Result of applying an RSVP.

    Attributes:
        rsvp: The stored RSVP.
        affected: Occurrence ids where this RSVP is now the effective one.
        superseded: Occurrence ids in scope where a later RSVP still wins.
        deltas: Counter changes per occurrence id, keyed by response.
    """
    rsvp: RSVP
    affected: list[str] = []
    superseded: list[str] = []
    deltas: dict[str, dict[str, int]] = {}
