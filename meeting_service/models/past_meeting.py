"""Past meeting records.

A PastMeeting is the historical record of one held occurrence of a
meeting. It snapshots the meeting fields as of its creation, since the
live meeting may change later, and owns the sessions the conferencing
platform reported for the occurrence.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class PastMeetingState(str, Enum):
    """Derived reconciliation state of a past meeting."""
    NO_RECORD = "no_record"
    OPEN = "open"
    CLOSED = "closed"
    ENRICHED = "enriched"


class PastMeeting(SQLModel, table=True):
    """A held occurrence of a meeting.

    Attributes:
        uid: Unique identifier, distinct from the meeting uid.
        version: Optimistic-concurrency token.
        meeting_uid: The originating meeting.
        occurrence_id: The occurrence this record belongs to.
        platform_meeting_id: Platform meeting id at the time of the event.
        source: "webhook" or "manual".
        scheduled_start_time: Scheduled start of the occurrence.
        scheduled_end_time: Scheduled end of the occurrence.
    """
    __table_args__ = (UniqueConstraint("meeting_uid", "occurrence_id"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    version: int = Field(default=1)
    meeting_uid: UUID = Field(foreign_key="meeting.uid", index=True)
    occurrence_id: str
    project_uid: str = Field(index=True)
    title: str
    description: str = ""
    timezone: str = "UTC"
    duration: int = 0
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    visibility: str = "public"
    restricted: bool = False
    committees: list = Field(default_factory=list, sa_column=Column(JSON))
    platform: str = "Zoom"
    platform_meeting_id: str | None = None
    meeting_type: str | None = None
    recording_enabled: bool = False
    transcript_enabled: bool = False
    artifact_visibility: str | None = None
    source: str = "webhook"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PastMeetingSession(SQLModel, table=True):
    """One start/end segment of a held occurrence.

    A platform restart produces a second session under the same past
    meeting.
    """
    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    past_meeting_uid: UUID = Field(foreign_key="pastmeeting.uid", index=True)
    provider_session_id: str | None = Field(default=None, index=True)
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.start_time is not None and self.end_time is None


class PastMeetingCreate(SQLModel):
    """Manual entry of a past meeting."""
    meeting_uid: UUID
    occurrence_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class PastMeetingRead(SQLModel):
    """Past meeting with its sessions and derived state."""
    uid: UUID
    version: int
    meeting_uid: UUID
    occurrence_id: str
    project_uid: str
    title: str
    description: str
    timezone: str
    duration: int
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    visibility: str
    restricted: bool
    committees: list
    platform: str
    platform_meeting_id: str | None
    meeting_type: str | None
    artifact_visibility: str | None
    source: str
    state: PastMeetingState
    sessions: list[PastMeetingSession] = []
