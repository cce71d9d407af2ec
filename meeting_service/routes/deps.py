"""Shared route dependencies."""
from functools import lru_cache

from fastapi import Depends, Header, Response
from sqlmodel import Session

from meeting_service.core.concurrency import format_version
from meeting_service.core.database import get_session
from meeting_service.providers.base import ProviderRegistry
from meeting_service.providers.google_meet import GoogleMeetProvider
from meeting_service.providers.zoom import ZoomProvider
from meeting_service.scheduling.service import MeetingLifecycleService


@lru_cache
def get_provider_registry() -> ProviderRegistry:
    """Process-wide provider registry (tests override this dependency)."""
    return ProviderRegistry([ZoomProvider(), GoogleMeetProvider()])


def get_caller(x_caller_identity: str | None = Header(default=None)) -> str | None:
    """Verified caller identity set by the identity proxy in front of the service."""
    return x_caller_identity


def get_service(
    session: Session = Depends(get_session),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> MeetingLifecycleService:
    return MeetingLifecycleService(session, providers)


def set_etag(response: Response, entity) -> None:
    response.headers["ETag"] = format_version(entity.version)
