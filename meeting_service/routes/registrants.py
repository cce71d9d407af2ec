"""Registrant routes."""
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Response

from meeting_service.models.registrant import Registrant, RegistrantCreate, RegistrantUpdate
from meeting_service.routes.deps import get_service, set_etag
from meeting_service.scheduling.service import MeetingLifecycleService

router = APIRouter(prefix="/meetings/{meeting_uid}/registrants", tags=["registrants"])


@router.post("", response_model=Registrant, status_code=201)
def create_registrant(
    meeting_uid: UUID,
    data: RegistrantCreate,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    """Register a person directly. A duplicate email is rejected with 409."""
    registrant = service.create_registrant(meeting_uid, data)
    set_etag(response, registrant)
    return registrant


@router.get("", response_model=list[Registrant])
def list_registrants(
    meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_registrants(meeting_uid)


@router.get("/{registrant_uid}", response_model=Registrant)
def get_registrant(
    meeting_uid: UUID,
    registrant_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    registrant = service.get_registrant(meeting_uid, registrant_uid)
    set_etag(response, registrant)
    return registrant


@router.put("/{registrant_uid}", response_model=Registrant)
def update_registrant(
    meeting_uid: UUID,
    registrant_uid: UUID,
    data: RegistrantUpdate,
    response: Response,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    registrant = service.update_registrant(meeting_uid, registrant_uid, data, if_match)
    set_etag(response, registrant)
    return registrant


@router.delete("/{registrant_uid}", status_code=204)
def delete_registrant(
    meeting_uid: UUID,
    registrant_uid: UUID,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    service.delete_registrant(meeting_uid, registrant_uid, if_match)


@router.post("/{registrant_uid}/resend", response_model=Registrant)
def resend_invitation(
    meeting_uid: UUID,
    registrant_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    registrant = service.resend_invitation(meeting_uid, registrant_uid)
    set_etag(response, registrant)
    return registrant
