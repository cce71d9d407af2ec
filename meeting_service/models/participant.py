"""Past meeting participants.

Invitation and attendance are tracked as independent flags: a person can
be invited without attending, or attend without an invitation.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class PastMeetingParticipant(SQLModel, table=True):
    """A person invited to or present at a past meeting.

    Attributes:
        identity_key: Stable key for upserts within the past meeting;
            lowercased email when known, else the platform user id.
        registrant_uid: Matching registrant of the originating meeting.
        is_invited: Was a registrant for the occurrence.
        is_attended: Joined at least once. Never cleared by leave events.
    """
    __table_args__ = (UniqueConstraint("past_meeting_uid", "identity_key"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    version: int = Field(default=1)
    past_meeting_uid: UUID = Field(foreign_key="pastmeeting.uid", index=True)
    identity_key: str
    registrant_uid: UUID | None = None
    email: str | None = None
    username: str | None = None
    first_name: str = ""
    last_name: str = ""
    job_title: str | None = None
    org_name: str | None = None
    host: bool = False
    is_invited: bool = False
    is_attended: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ParticipantSession(SQLModel, table=True):
    """One join/leave interval of a participant."""
    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    participant_uid: UUID = Field(foreign_key="pastmeetingparticipant.uid", index=True)
    provider_participant_id: str | None = None
    join_time: datetime | None = None
    leave_time: datetime | None = None


class ParticipantUpdate(SQLModel):
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    org_name: str | None = None
    host: bool | None = None
    is_invited: bool | None = None
    is_attended: bool | None = None
