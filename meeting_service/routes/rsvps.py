"""RSVP routes."""
from uuid import UUID

from fastapi import APIRouter, Depends

from meeting_service.models.rsvp import RSVP, RSVPCreate, RSVPOutcome
from meeting_service.routes.deps import get_caller, get_service
from meeting_service.scheduling.service import MeetingLifecycleService

router = APIRouter(prefix="/meetings/{meeting_uid}/rsvp", tags=["rsvp"])


@router.put("", response_model=RSVPOutcome)
def submit_rsvp(
    meeting_uid: UUID,
    data: RSVPCreate,
    caller: str | None = Depends(get_caller),
    service: MeetingLifecycleService = Depends(get_service),
):
    """
    Submit an RSVP for a registrant.

    The response lists the occurrences this RSVP now decides and those
    where a more recent RSVP of the same registrant still takes precedence.
    """
    return service.submit_rsvp(meeting_uid, data, caller)


@router.get("", response_model=list[RSVP])
def list_rsvps(
    meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_rsvps(meeting_uid)
