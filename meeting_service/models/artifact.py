"""Artifact and attachment metadata.

Only metadata is kept here. The bytes live in object storage and are
referenced by an opaque object uid or a platform download URL.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class PastMeetingArtifact(SQLModel, table=True):
    """A recording or transcript file reported by the platform.

    Attributes:
        provider_artifact_id: The platform's file id; re-deliveries of the
            same file are deduplicated on it.
        kind: "recording" or "transcript".
        file_type: Platform file type (MP4, M4A, TRANSCRIPT, ...).
    """
    __table_args__ = (UniqueConstraint("past_meeting_uid", "provider_artifact_id"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    past_meeting_uid: UUID = Field(foreign_key="pastmeeting.uid", index=True)
    provider_artifact_id: str
    kind: str
    file_type: str | None = None
    file_size: int | None = None
    download_url: str | None = None
    play_url: str | None = None
    recording_start: datetime | None = None
    recording_end: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Attachment(SQLModel, table=True):
    """File attached to a meeting or a past meeting by a user."""
    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_uid: UUID | None = Field(default=None, foreign_key="meeting.uid", index=True)
    past_meeting_uid: UUID | None = Field(
        default=None, foreign_key="pastmeeting.uid", index=True
    )
    object_uid: str
    name: str
    content_type: str
    size: int = 0
    uploaded_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AttachmentCreate(SQLModel):
    object_uid: str = Field(min_length=1)
    name: str = Field(min_length=1)
    content_type: str
    size: int = Field(default=0, ge=0)
