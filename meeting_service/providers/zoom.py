"""Zoom REST API client (Server-to-Server OAuth).

Access tokens are fetched with the account-credentials grant and cached
until shortly before they expire. Every HTTP failure is logged and turned
into a TransientError; this client does not retry.
"""

import logging
import time

import httpx

from meeting_service.core.config import settings
from meeting_service.core.errors import TransientError
from meeting_service.models.meeting import Meeting
from meeting_service.models.registrant import Registrant
from meeting_service.providers.base import ProviderMeeting, ProviderRegistrant

logger = logging.getLogger(__name__)

SCHEDULED_MEETING = 2
RECURRING_FIXED_TIME = 8

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60


def _zoom_time(value) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def meeting_payload(meeting: Meeting) -> dict:
    """Translate a meeting into Zoom's meeting object."""
    payload = {
        "topic": meeting.title,
        "agenda": meeting.description,
        "type": SCHEDULED_MEETING,
        "start_time": _zoom_time(meeting.start_time),
        "duration": meeting.duration,
        "timezone": meeting.timezone,
        "settings": {
            "join_before_host": meeting.early_join_time_minutes > 0,
            "jbh_time": meeting.early_join_time_minutes,
            "auto_recording": "cloud" if meeting.recording_enabled else "none",
            # 0 = registration required and automatically approved
            "approval_type": 0 if meeting.restricted else 2,
        },
    }
    rule = meeting.recurrence_rule
    if rule is not None:
        payload["type"] = RECURRING_FIXED_TIME
        recurrence = rule.model_dump(exclude_none=True)
        if rule.end_date_time is not None:
            recurrence["end_date_time"] = _zoom_time(rule.end_date_time)
        payload["recurrence"] = recurrence
    return payload


class ZoomProvider:
    """Conferencing provider backed by the Zoom API."""

    platform = "Zoom"

    def __init__(
        self,
        account_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.account_id = account_id or settings.zoom_account_id
        self.client_id = client_id or settings.zoom_client_id
        self.client_secret = client_secret or settings.zoom_client_secret
        self.base_url = (base_url or settings.zoom_api_base_url).rstrip("/")
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _access_token(self, client: httpx.Client) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        response = client.post(
            settings.zoom_oauth_url,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            auth=(self.client_id or "", self.client_secret or ""),
        )
        response.raise_for_status()
        data = response.json()
        self._token = data["access_token"]
        self._token_expires_at = (
            time.monotonic() + data.get("expires_in", 3600) - TOKEN_EXPIRY_MARGIN
        )
        logger.info("Obtained Zoom access token")
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with httpx.Client(
                timeout=settings.provider_timeout_seconds, transport=self._transport
            ) as client:
                token = self._access_token(client)
                response = client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers={"Authorization": f"Bearer {token}"},
                    **kwargs,
                )
                response.raise_for_status()
                if not response.content:
                    return {}
                return response.json()
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Zoom {method} {path} failed: {e}")
            raise TransientError(f"Zoom request failed: {method} {path}") from e

    def create_meeting(self, meeting: Meeting) -> ProviderMeeting:
        data = self._request("POST", "/users/me/meetings", json=meeting_payload(meeting))
        logger.info(f"Created Zoom meeting {data.get('id')} for meeting {meeting.uid}")
        return ProviderMeeting(platform_meeting_id=str(data["id"]), join_url=data.get("join_url"))

    def update_meeting(self, meeting: Meeting) -> None:
        self._request(
            "PATCH", f"/meetings/{meeting.platform_meeting_id}", json=meeting_payload(meeting)
        )

    def delete_meeting(self, meeting: Meeting, occurrence_id: str | None = None) -> None:
        params = {"occurrence_id": occurrence_id} if occurrence_id else None
        self._request("DELETE", f"/meetings/{meeting.platform_meeting_id}", params=params)

    def create_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant:
        body = {
            "email": registrant.email,
            "first_name": registrant.first_name or registrant.email,
            "last_name": registrant.last_name,
            "org": registrant.org_name or "",
            "job_title": registrant.job_title or "",
        }
        params = {"occurrence_ids": registrant.occurrence_id} if registrant.occurrence_id else None
        data = self._request(
            "POST",
            f"/meetings/{meeting.platform_meeting_id}/registrants",
            json=body,
            params=params,
        )
        return ProviderRegistrant(
            platform_registrant_id=data.get("registrant_id"), join_url=data.get("join_url")
        )

    def update_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant:
        # Zoom registrants cannot be edited in place
        if registrant.platform_registrant_id:
            self.delete_registrant(meeting, registrant)
        return self.create_registrant(meeting, registrant)

    def delete_registrant(self, meeting: Meeting, registrant: Registrant) -> None:
        if not registrant.platform_registrant_id:
            return
        self._request(
            "DELETE",
            f"/meetings/{meeting.platform_meeting_id}/registrants/"
            f"{registrant.platform_registrant_id}",
        )

    def get_join_link(self, meeting: Meeting, registrant: Registrant | None = None) -> str | None:
        if registrant is not None and registrant.join_url:
            return registrant.join_url
        if meeting.join_url:
            return meeting.join_url
        data = self._request("GET", f"/meetings/{meeting.platform_meeting_id}")
        return data.get("join_url")
