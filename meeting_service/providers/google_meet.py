"""Google Meet provider using the Calendar API with conference data.

A meeting is a calendar event with a ``hangoutsMeet`` conference; the
recurrence rule becomes an RRULE and registrants become event attendees.
Credentials come from a pre-authorized refresh token (see
``scripts/get_token.py``).
"""

import logging
from datetime import timedelta

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from meeting_service.core.config import settings
from meeting_service.core.errors import TransientError
from meeting_service.models.meeting import Meeting, Recurrence
from meeting_service.models.registrant import Registrant
from meeting_service.providers.base import ProviderMeeting, ProviderRegistrant
from meeting_service.scheduling.recurrence import (
    DAILY,
    WEEKLY,
    occurrence_start,
    parse_weekly_days,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]

RRULE_DAYS = {1: "SU", 2: "MO", 3: "TU", 4: "WE", 5: "TH", 6: "FR", 7: "SA"}


def to_rrule(rule: Recurrence) -> str:
    """Translate a recurrence rule into an RFC 5545 RRULE line."""
    if rule.type == DAILY:
        parts = ["FREQ=DAILY"]
    elif rule.type == WEEKLY:
        days = ",".join(RRULE_DAYS[code] for code in parse_weekly_days(rule.weekly_days))
        parts = ["FREQ=WEEKLY", f"BYDAY={days}", "WKST=SU"]
    else:
        parts = ["FREQ=MONTHLY"]
        if rule.monthly_week is not None:
            parts.append(f"BYDAY={rule.monthly_week}{RRULE_DAYS[rule.monthly_week_day]}")
        elif rule.monthly_day is not None:
            parts.append(f"BYMONTHDAY={rule.monthly_day}")
    parts.append(f"INTERVAL={rule.repeat_interval}")
    if rule.end_times is not None:
        parts.append(f"COUNT={rule.end_times}")
    elif rule.end_date_time is not None:
        parts.append(f"UNTIL={rule.end_date_time.strftime('%Y%m%dT%H%M%SZ')}")
    return "RRULE:" + ";".join(parts)


def _end_time(meeting: Meeting):
    return meeting.start_time + timedelta(minutes=meeting.duration)


class GoogleMeetProvider:
    """Conferencing provider backed by Google Calendar + Meet."""

    platform = "GoogleMeet"

    def __init__(self, calendar_id: str | None = None, service=None):
        self.calendar_id = calendar_id or settings.google_calendar_id
        self._service = service
        self._credentials: Credentials | None = None

    def _get_credentials(self) -> Credentials:
        if self._credentials and not self._credentials.expired:
            return self._credentials
        if not settings.google_refresh_token:
            raise TransientError(
                "No GOOGLE_REFRESH_TOKEN configured. Run 'python scripts/get_token.py'."
            )
        self._credentials = Credentials(
            token=None,
            refresh_token=settings.google_refresh_token,
            token_uri="https://oauth2.googleapis.com/token",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            scopes=SCOPES,
        )
        self._credentials.refresh(Request())
        logger.info("Refreshed Google API credentials")
        return self._credentials

    def _calendar(self):
        if self._service is None:
            self._service = build("calendar", "v3", credentials=self._get_credentials())
        return self._service

    def _execute(self, description: str, build_request):
        try:
            return build_request(self._calendar().events()).execute()
        except (HttpError, GoogleAuthError) as e:
            logger.error(f"Google Calendar {description} failed: {e}")
            raise TransientError(f"Google Calendar request failed: {description}") from e

    def _event_body(self, meeting: Meeting) -> dict:
        body = {
            "summary": meeting.title,
            "description": meeting.description,
            "start": {"dateTime": meeting.start_time.isoformat(), "timeZone": meeting.timezone},
            "end": {"dateTime": _end_time(meeting).isoformat(), "timeZone": meeting.timezone},
            "visibility": "private" if meeting.visibility == "private" else "default",
        }
        rule = meeting.recurrence_rule
        if rule is not None:
            body["recurrence"] = [to_rrule(rule)]
        return body

    def create_meeting(self, meeting: Meeting) -> ProviderMeeting:
        body = self._event_body(meeting)
        body["conferenceData"] = {
            "createRequest": {
                "requestId": str(meeting.uid),
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
        event = self._execute(
            "insert",
            lambda events: events.insert(
                calendarId=self.calendar_id,
                body=body,
                conferenceDataVersion=1,
                sendUpdates="none",
            ),
        )
        logger.info(f"Created Google Meet event {event['id']} for meeting {meeting.uid}")
        return ProviderMeeting(platform_meeting_id=event["id"], join_url=event.get("hangoutLink"))

    def update_meeting(self, meeting: Meeting) -> None:
        self._execute(
            "patch",
            lambda events: events.patch(
                calendarId=self.calendar_id,
                eventId=meeting.platform_meeting_id,
                body=self._event_body(meeting),
            ),
        )

    def delete_meeting(self, meeting: Meeting, occurrence_id: str | None = None) -> None:
        event_id = meeting.platform_meeting_id
        if occurrence_id:
            # Instances of a recurring event are addressed as <id>_<UTC start>
            start = occurrence_start(occurrence_id)
            event_id = f"{event_id}_{start.strftime('%Y%m%dT%H%M%SZ')}"
        self._execute(
            "delete",
            lambda events: events.delete(calendarId=self.calendar_id, eventId=event_id),
        )

    def _set_attendees(self, meeting: Meeting, change) -> None:
        event = self._execute(
            "get",
            lambda events: events.get(
                calendarId=self.calendar_id, eventId=meeting.platform_meeting_id
            ),
        )
        attendees = change(event.get("attendees", []))
        self._execute(
            "patch",
            lambda events: events.patch(
                calendarId=self.calendar_id,
                eventId=meeting.platform_meeting_id,
                body={"attendees": attendees},
            ),
        )

    def create_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant:
        def add(attendees):
            emails = {a.get("email", "").lower() for a in attendees}
            if registrant.email.lower() not in emails:
                attendees.append(
                    {"email": registrant.email, "displayName": registrant.full_name or None}
                )
            return attendees

        self._set_attendees(meeting, add)
        return ProviderRegistrant(platform_registrant_id=registrant.email, join_url=meeting.join_url)

    def update_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant:
        previous = (registrant.platform_registrant_id or registrant.email).lower()

        def replace(attendees):
            kept = [a for a in attendees if a.get("email", "").lower() != previous]
            kept.append({"email": registrant.email, "displayName": registrant.full_name or None})
            return kept

        self._set_attendees(meeting, replace)
        return ProviderRegistrant(platform_registrant_id=registrant.email, join_url=meeting.join_url)

    def delete_registrant(self, meeting: Meeting, registrant: Registrant) -> None:
        email = (registrant.platform_registrant_id or registrant.email).lower()
        self._set_attendees(
            meeting,
            lambda attendees: [a for a in attendees if a.get("email", "").lower() != email],
        )

    def get_join_link(self, meeting: Meeting, registrant: Registrant | None = None) -> str | None:
        if meeting.join_url:
            return meeting.join_url
        event = self._execute(
            "get",
            lambda events: events.get(
                calendarId=self.calendar_id, eventId=meeting.platform_meeting_id
            ),
        )
        return event.get("hangoutLink")
