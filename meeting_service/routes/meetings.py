"""Meeting routes: meetings, settings, occurrences, join links and attachments."""
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Response

from meeting_service.models.artifact import Attachment, AttachmentCreate
from meeting_service.models.meeting import (
    Meeting,
    MeetingCreate,
    MeetingSettings,
    MeetingSettingsUpdate,
    MeetingUpdate,
)
from meeting_service.models.occurrence import Occurrence, OccurrenceUpdate
from meeting_service.routes.deps import get_caller, get_service, set_etag
from meeting_service.scheduling.service import MeetingLifecycleService

router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.post("", response_model=Meeting, status_code=201)
def create_meeting(
    data: MeetingCreate,
    response: Response,
    caller: str | None = Depends(get_caller),
    service: MeetingLifecycleService = Depends(get_service),
):
    """Schedule a meeting on its conferencing platform."""
    meeting = service.create_meeting(data, caller)
    set_etag(response, meeting)
    return meeting


@router.get("", response_model=list[Meeting])
def list_meetings(
    project_uid: str | None = None,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_meetings(project_uid)


@router.get("/{meeting_uid}", response_model=Meeting)
def get_meeting(
    meeting_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    meeting = service.get_meeting(meeting_uid)
    set_etag(response, meeting)
    return meeting


@router.put("/{meeting_uid}", response_model=Meeting)
def update_meeting(
    meeting_uid: UUID,
    data: MeetingUpdate,
    response: Response,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    """
    Update a meeting.

    Requires the If-Match header with the ETag from the last read; a stale
    value is rejected with 412.
    """
    meeting = service.update_meeting(meeting_uid, data, if_match)
    set_etag(response, meeting)
    return meeting


@router.delete("/{meeting_uid}", status_code=204)
def delete_meeting(
    meeting_uid: UUID,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    service.delete_meeting(meeting_uid, if_match)


@router.get("/{meeting_uid}/settings", response_model=MeetingSettings)
def get_settings(
    meeting_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    meeting_settings = service.get_settings(meeting_uid)
    set_etag(response, meeting_settings)
    return meeting_settings


@router.put("/{meeting_uid}/settings", response_model=MeetingSettings)
def update_settings(
    meeting_uid: UUID,
    data: MeetingSettingsUpdate,
    response: Response,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    meeting_settings = service.update_settings(meeting_uid, data, if_match)
    set_etag(response, meeting_settings)
    return meeting_settings


@router.get("/{meeting_uid}/occurrences", response_model=list[Occurrence])
def list_occurrences(
    meeting_uid: UUID,
    include_cancelled: bool = True,
    service: MeetingLifecycleService = Depends(get_service),
):
    """Present and future occurrences with cancellations and edits applied."""
    return service.list_occurrences(meeting_uid, include_cancelled)


@router.get("/{meeting_uid}/occurrences/{occurrence_id}", response_model=Occurrence)
def get_occurrence(
    meeting_uid: UUID,
    occurrence_id: str,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.get_occurrence(meeting_uid, occurrence_id)


@router.patch("/{meeting_uid}/occurrences/{occurrence_id}", response_model=Occurrence)
def edit_occurrence(
    meeting_uid: UUID,
    occurrence_id: str,
    data: OccurrenceUpdate,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.edit_occurrence(meeting_uid, occurrence_id, data, if_match)


@router.post("/{meeting_uid}/occurrences/{occurrence_id}/cancel", response_model=Occurrence)
def cancel_occurrence(
    meeting_uid: UUID,
    occurrence_id: str,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    """Cancel a single occurrence. Repeating the call is harmless."""
    return service.cancel_occurrence(meeting_uid, occurrence_id, if_match)


@router.get("/{meeting_uid}/join_link")
def get_join_link(
    meeting_uid: UUID,
    registrant_uid: UUID | None = None,
    caller: str | None = Depends(get_caller),
    service: MeetingLifecycleService = Depends(get_service),
):
    return {"link": service.get_join_link(meeting_uid, caller, registrant_uid)}


@router.post("/{meeting_uid}/attachments", response_model=Attachment, status_code=201)
def add_attachment(
    meeting_uid: UUID,
    data: AttachmentCreate,
    caller: str | None = Depends(get_caller),
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.add_attachment(data, meeting_uid=meeting_uid, caller=caller)


@router.get("/{meeting_uid}/attachments", response_model=list[Attachment])
def list_attachments(
    meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_attachments(meeting_uid=meeting_uid)


@router.delete("/{meeting_uid}/attachments/{attachment_uid}", status_code=204)
def delete_attachment(
    meeting_uid: UUID,
    attachment_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    service.delete_attachment(attachment_uid, meeting_uid=meeting_uid)
