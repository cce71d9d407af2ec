"""Registrant model for tracking who is invited to a meeting.

A registrant is either added directly or derived from committee
membership. Committee registrants follow committee changes and are not
created or removed by clients.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import EmailStr
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Registrant(SQLModel, table=True):
    """A person invited to a meeting.

    Attributes:
        uid: Unique identifier (UUID).
        version: Optimistic-concurrency token.
        meeting_uid: The meeting this registrant is invited to.
        email: Email address, unique within the meeting.
        username: Platform username, if the person has an account.
        first_name: Given name.
        last_name: Family name.
        job_title: Job title.
        org_name: Organization.
        host: Whether the registrant may host the meeting.
        type: "direct" or "committee".
        committee_uid: Committee the registrant was derived from.
        occurrence_id: Target occurrence; empty means every occurrence.
        platform_registrant_id: Registrant id on the conferencing platform.
        join_url: Personal join link returned by the platform.
        invites_sent_count: Number of invitations sent (read-only).
        last_invite_received_time: When the last invitation went out.
        attended_occurrence_count: Occurrences attended, maintained by
            webhook reconciliation (read-only).
    """
    __table_args__ = (UniqueConstraint("meeting_uid", "email"),)

    uid: UUID = Field(default_factory=uuid4, primary_key=True)
    version: int = Field(default=1)
    meeting_uid: UUID = Field(foreign_key="meeting.uid", index=True)
    email: str
    username: str | None = Field(default=None, index=True)
    first_name: str = ""
    last_name: str = ""
    job_title: str | None = None
    org_name: str | None = None
    host: bool = False
    type: str = "direct"
    committee_uid: str | None = None
    occurrence_id: str = ""
    platform_registrant_id: str | None = None
    join_url: str | None = None
    invites_sent_count: int = 0
    last_invite_received_time: datetime | None = None
    attended_occurrence_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def covers(self, occurrence_id: str) -> bool:
        """Whether the registrant is invited to the given occurrence."""
        return not self.occurrence_id or self.occurrence_id == occurrence_id


class RegistrantCreate(SQLModel):
    email: EmailStr
    username: str | None = None
    first_name: str = ""
    last_name: str = ""
    job_title: str | None = None
    org_name: str | None = None
    host: bool = False
    occurrence_id: str = ""


class RegistrantUpdate(SQLModel):
    email: EmailStr | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    org_name: str | None = None
    host: bool | None = None
    occurrence_id: str | None = None
