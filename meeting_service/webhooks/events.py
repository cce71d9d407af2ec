"""Typed webhook events.

The platform sends an envelope ``{"event", "event_ts", "payload"}``. The
event name is mapped onto a closed set of kinds with an explicit UNKNOWN
fallback, and each kind has its own payload model for ``payload.object``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookEventKind(str, Enum):
    MEETING_STARTED = "meeting.started"
    MEETING_ENDED = "meeting.ended"
    PARTICIPANT_JOINED = "meeting.participant_joined"
    PARTICIPANT_LEFT = "meeting.participant_left"
    RECORDING_COMPLETED = "recording.completed"
    TRANSCRIPT_COMPLETED = "recording.transcript_completed"
    SUMMARY_COMPLETED = "meeting.summary_completed"
    URL_VALIDATION = "endpoint.url_validation"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str | None) -> "WebhookEventKind":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WebhookEnvelope(_Payload):
    event: str
    event_ts: int | None = None
    payload: dict = {}

    @property
    def kind(self) -> WebhookEventKind:
        return WebhookEventKind.parse(self.event)


class MeetingObject(_Payload):
    """Fields shared by every meeting-scoped event."""
    id: str
    uuid: str | None = None
    topic: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    duration: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        # Sent as a string by some events and as a number by others
        return str(value) if value is not None else value


class Participant(_Payload):
    user_id: str | None = None
    user_name: str | None = None
    id: str | None = None
    email: str | None = None
    participant_user_id: str | None = None
    registrant_id: str | None = None
    join_time: datetime | None = None
    leave_time: datetime | None = None
    duration: int | None = None

    @property
    def identity_key(self) -> str | None:
        """Upsert key of the participant within one past meeting."""
        if self.email:
            return self.email.strip().lower()
        for candidate in (self.participant_user_id, self.user_id, self.id):
            if candidate:
                return f"id:{candidate}"
        if self.user_name:
            return f"name:{self.user_name}"
        return None


class ParticipantObject(MeetingObject):
    participant: Participant


class RecordingFile(_Payload):
    id: str
    file_type: str | None = None
    file_size: int | None = None
    download_url: str | None = None
    play_url: str | None = None
    recording_start: datetime | None = None
    recording_end: datetime | None = None
    recording_type: str | None = None
    status: str | None = None


class RecordingObject(MeetingObject):
    recording_files: list[RecordingFile] = []


class SummaryContent(_Payload):
    summary_title: str | None = None
    summary_overview: str | None = None
    summary_details: list | str | None = None
    next_steps: list[str] = []
    key_points: list[str] = []
    summary_doc_url: str | None = None
    summary_start_time: datetime | None = None
    summary_end_time: datetime | None = None

    def details_text(self) -> str | None:
        """Flatten detail sections ({label, summary}) into plain text."""
        if isinstance(self.summary_details, str) or self.summary_details is None:
            details = self.summary_details
        else:
            parts = []
            for item in self.summary_details:
                if isinstance(item, dict):
                    label = item.get("label")
                    text = item.get("summary", "")
                    parts.append(f"{label}: {text}" if label else text)
                else:
                    parts.append(str(item))
            details = "\n".join(parts)
        if self.key_points:
            points = "\n".join(f"- {point}" for point in self.key_points)
            details = f"{details}\n{points}" if details else points
        return details


class SummaryObject(MeetingObject):
    summary: SummaryContent = Field(default_factory=SummaryContent)


class UrlValidationPayload(_Payload):
    plainToken: str


PAYLOAD_TYPES: dict[WebhookEventKind, type[MeetingObject]] = {
    WebhookEventKind.MEETING_STARTED: MeetingObject,
    WebhookEventKind.MEETING_ENDED: MeetingObject,
    WebhookEventKind.PARTICIPANT_JOINED: ParticipantObject,
    WebhookEventKind.PARTICIPANT_LEFT: ParticipantObject,
    WebhookEventKind.RECORDING_COMPLETED: RecordingObject,
    WebhookEventKind.TRANSCRIPT_COMPLETED: RecordingObject,
    WebhookEventKind.SUMMARY_COMPLETED: SummaryObject,
}
