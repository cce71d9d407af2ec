"""Meeting model and its request schemas.

This module defines the Meeting table, which represents a scheduled
(optionally recurring) virtual meeting, and MeetingSettings, which holds
the organizer list under its own version so that settings edits do not
collide with edits to the meeting itself.

The recurrence rule and committee list are stored as JSON columns; the
Recurrence and Committee schemas below give them a typed shape.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Recurrence(SQLModel):
    """Recurrence pattern of a meeting.

    Attributes:
        type: 1 = daily, 2 = weekly, 3 = monthly.
        repeat_interval: Spacing between periods (days, weeks or months).
        weekly_days: Comma-separated weekday codes 1-7 where 1 is Sunday.
        monthly_day: Day of month (1-31), clamped to shorter months.
        monthly_week: Week of month (-1 for last, or 1-4).
        monthly_week_day: Weekday code 1-7 used with monthly_week.
        end_times: Total number of occurrences in the series.
        end_date_time: Inclusive upper bound on occurrence start times.
    """
    type: int
    repeat_interval: int = 1
    weekly_days: str | None = None
    monthly_day: int | None = None
    monthly_week: int | None = None
    monthly_week_day: int | None = None
    end_times: int | None = None
    end_date_time: datetime | None = None


class Committee(SQLModel):
    """A committee whose members are invited, filtered by voting status."""
    uid: str
    allowed_voting_statuses: list[str] = []


class Meeting(SQLModel, table=True):
    """A scheduled meeting on a conferencing platform.

    Meetings are never physically deleted while past meeting records may
    reference them. Deleting a meeting stamps ``deleted_at``, which stops
    future scheduling but keeps the history readable.

    Attributes:
        uid: Unique identifier (UUID), immutable.
        version: Optimistic-concurrency token, bumped on every mutation.
        project_uid: Project the meeting belongs to.
        title: Meeting title.
        description: Meeting description.
        start_time: Start of the first (or only) occurrence, UTC.
        duration: Length in minutes (0-600).
        timezone: IANA timezone the recurrence is expanded in.
        recurrence: Recurrence rule as JSON (see Recurrence), or None.
        visibility: "public" or "private".
        restricted: If True only registrants may join.
        committees: Committees whose members are invited (JSON).
        platform: Conferencing platform name (e.g. "Zoom").
        platform_meeting_id: Meeting id assigned by the platform. Used to
            route inbound webhooks back to this meeting.
        join_url: Join link returned by the platform.
        early_join_time_minutes: How early participants may join.
        meeting_type: Free-form classification (e.g. "Board").
        recording_enabled: Cloud recording requested.
        transcript_enabled: Transcript requested.
        youtube_upload_enabled: Recording upload to YouTube requested.
        ai_summary_require_approval: AI summaries need approval before
            they are shared.
        artifact_visibility: Who may see recordings and summaries.
        created_by: Verified identity of the creator.
        created_at: Creation timestamp.
        updated_at: Last mutation timestamp.
        deleted_at: Set when the meeting was cancelled.
    """
    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    version: int = Field(default=1)
    project_uid: str = Field(index=True)
    title: str
    description: str = ""
    start_time: datetime
    duration: int
    timezone: str = "UTC"
    recurrence: dict | None = Field(default=None, sa_column=Column(JSON))
    visibility: str = "public"
    restricted: bool = False
    committees: list = Field(default_factory=list, sa_column=Column(JSON))
    platform: str = "Zoom"
    platform_meeting_id: str | None = Field(default=None, index=True)
    join_url: str | None = None
    early_join_time_minutes: int = 10
    meeting_type: str | None = None
    recording_enabled: bool = False
    transcript_enabled: bool = False
    youtube_upload_enabled: bool = False
    ai_summary_require_approval: bool = False
    artifact_visibility: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    deleted_at: datetime | None = None

    @property
    def recurrence_rule(self) -> Recurrence | None:
        if not self.recurrence:
            return None
        return Recurrence.model_validate(self.recurrence)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class MeetingSettings(SQLModel, table=True):
    """Organizer settings for a meeting, versioned separately.

    Attributes:
        meeting_uid: The meeting these settings belong to.
        version: Optimistic-concurrency token.
        organizers: Identities allowed to manage the meeting (JSON list).
    """
    meeting_uid: UUID = Field(foreign_key="meeting.uid", primary_key=True)
    version: int = Field(default=1)
    organizers: list = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ── Request schemas ──────────────────────────────────────────────────────────


class MeetingCreate(SQLModel):
    """Request body for scheduling a meeting."""
    project_uid: str
    title: str = Field(min_length=1)
    description: str = ""
    start_time: datetime
    duration: int = Field(ge=0, le=600)
    timezone: str = "UTC"
    recurrence: Recurrence | None = None
    visibility: str = "public"
    restricted: bool = False
    committees: list[Committee] = []
    platform: str = "Zoom"
    early_join_time_minutes: int = Field(default=10, ge=0, le=60)
    meeting_type: str | None = None
    recording_enabled: bool = False
    transcript_enabled: bool = False
    youtube_upload_enabled: bool = False
    ai_summary_require_approval: bool = False
    artifact_visibility: str | None = None
    organizers: list[str] = []

    @field_validator("visibility")
    @classmethod
    def _check_visibility(cls, value: str) -> str:
        if value not in ("public", "private"):
            raise ValueError("visibility must be 'public' or 'private'")
        return value


class MeetingUpdate(SQLModel):
    """Partial update of a meeting. Unset fields are left untouched."""
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    duration: int | None = Field(default=None, ge=0, le=600)
    timezone: str | None = None
    recurrence: Recurrence | None = None
    visibility: str | None = None
    restricted: bool | None = None
    committees: list[Committee] | None = None
    early_join_time_minutes: int | None = Field(default=None, ge=0, le=60)
    meeting_type: str | None = None
    recording_enabled: bool | None = None
    transcript_enabled: bool | None = None
    youtube_upload_enabled: bool | None = None
    ai_summary_require_approval: bool | None = None
    artifact_visibility: str | None = None


class MeetingSettingsUpdate(SQLModel):
    organizers: list[str]
