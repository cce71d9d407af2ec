"""AI-generated summaries of past meetings.

Raw content from the platform and the human-edited overlay live in
separate columns. Re-delivered summaries overwrite only the raw columns,
so edits and approval survive.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

RAW_SUMMARY_FIELDS = (
    "summary_title",
    "summary_overview",
    "summary_details",
    "next_steps",
    "doc_url",
    "summary_start_time",
    "summary_end_time",
)


class PastMeetingSummary(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("past_meeting_uid", "platform"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    version: int = Field(default=1)
    past_meeting_uid: UUID = Field(foreign_key="pastmeeting.uid", index=True)
    platform: str = "Zoom"
    summary_title: str | None = None
    summary_overview: str | None = None
    summary_details: str | None = None
    next_steps: str | None = None
    doc_url: str | None = None
    summary_start_time: datetime | None = None
    summary_end_time: datetime | None = None
    edited_overview: str | None = None
    edited_details: str | None = None
    edited_next_steps: str | None = None
    requires_approval: bool = False
    approved: bool = False
    email_sent: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SummaryUpdate(SQLModel):
    """Editable overlay of a summary. Raw content is not editable."""
    edited_overview: str | None = None
    edited_details: str | None = None
    edited_next_steps: str | None = None
    approved: bool | None = None
