"""Conferencing provider interface.

Providers are only called on the scheduling path (client-driven
operations). Webhook reconciliation never talks to a provider.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from meeting_service.core.errors import ValidationError
from meeting_service.models.meeting import Meeting
from meeting_service.models.registrant import Registrant

logger = logging.getLogger(__name__)


@dataclass
class ProviderMeeting:
    platform_meeting_id: str
    join_url: str | None = None


@dataclass
class ProviderRegistrant:
    platform_registrant_id: str | None
    join_url: str | None = None


class ConferencingProvider(Protocol):
    """Remote meeting operations of one conferencing platform.

    Implementations raise TransientError for any failure of the remote
    service; the caller decides whether to retry.
    """

    platform: str

    def create_meeting(self, meeting: Meeting) -> ProviderMeeting: ...

    def update_meeting(self, meeting: Meeting) -> None: ...

    def delete_meeting(self, meeting: Meeting, occurrence_id: str | None = None) -> None: ...

    def create_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant: ...

    def update_registrant(self, meeting: Meeting, registrant: Registrant) -> ProviderRegistrant: ...

    def delete_registrant(self, meeting: Meeting, registrant: Registrant) -> None: ...

    def get_join_link(self, meeting: Meeting, registrant: Registrant | None = None) -> str | None: ...


class ProviderRegistry:
    """Providers keyed by the meeting ``platform`` value (case-insensitive)."""

    def __init__(self, providers: list[ConferencingProvider] | None = None):
        self._providers: dict[str, ConferencingProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: ConferencingProvider) -> None:
        self._providers[provider.platform.lower()] = provider
        logger.debug(f"Registered conferencing provider {provider.platform}")

    def get(self, platform: str) -> ConferencingProvider:
        """
        Raises:
            ValidationError: If no provider handles the platform.
        """
        provider = self._providers.get((platform or "").lower())
        if provider is None:
            raise ValidationError(f"Unsupported platform: {platform}")
        return provider

    def __contains__(self, platform: str) -> bool:
        return (platform or "").lower() in self._providers
