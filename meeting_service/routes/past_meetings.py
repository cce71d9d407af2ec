"""Past meeting routes: records, participants, summaries and attachments."""
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Response

from meeting_service.models.artifact import Attachment, AttachmentCreate
from meeting_service.models.participant import ParticipantUpdate, PastMeetingParticipant
from meeting_service.models.past_meeting import PastMeetingCreate, PastMeetingRead
from meeting_service.models.summary import PastMeetingSummary, SummaryUpdate
from meeting_service.routes.deps import get_caller, get_service, set_etag
from meeting_service.scheduling.service import MeetingLifecycleService

router = APIRouter(prefix="/past_meetings", tags=["past_meetings"])


@router.get("", response_model=list[PastMeetingRead])
def list_past_meetings(
    meeting_uid: UUID | None = None,
    project_uid: str | None = None,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_past_meetings(meeting_uid, project_uid)


@router.post("", response_model=PastMeetingRead, status_code=201)
def create_past_meeting(
    data: PastMeetingCreate,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    """
    Record a held occurrence manually.

    Rejected with 409 if the occurrence already has a past meeting, whether
    it was entered manually or created from a webhook.
    """
    past_meeting = service.create_past_meeting(data)
    set_etag(response, past_meeting)
    return past_meeting


@router.get("/{past_meeting_uid}", response_model=PastMeetingRead)
def get_past_meeting(
    past_meeting_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    past_meeting = service.get_past_meeting(past_meeting_uid)
    set_etag(response, past_meeting)
    return past_meeting


@router.delete("/{past_meeting_uid}", status_code=204)
def delete_past_meeting(
    past_meeting_uid: UUID,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    service.delete_past_meeting(past_meeting_uid, if_match)


@router.get("/{past_meeting_uid}/participants", response_model=list[PastMeetingParticipant])
def list_participants(
    past_meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_participants(past_meeting_uid)


@router.get(
    "/{past_meeting_uid}/participants/{participant_uid}", response_model=PastMeetingParticipant
)
def get_participant(
    past_meeting_uid: UUID,
    participant_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    participant = service.get_participant(past_meeting_uid, participant_uid)
    set_etag(response, participant)
    return participant


@router.put(
    "/{past_meeting_uid}/participants/{participant_uid}", response_model=PastMeetingParticipant
)
def update_participant(
    past_meeting_uid: UUID,
    participant_uid: UUID,
    data: ParticipantUpdate,
    response: Response,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    participant = service.update_participant(past_meeting_uid, participant_uid, data, if_match)
    set_etag(response, participant)
    return participant


@router.get("/{past_meeting_uid}/summaries", response_model=list[PastMeetingSummary])
def list_summaries(
    past_meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_summaries(past_meeting_uid)


@router.get("/{past_meeting_uid}/summaries/{summary_uid}", response_model=PastMeetingSummary)
def get_summary(
    past_meeting_uid: UUID,
    summary_uid: UUID,
    response: Response,
    service: MeetingLifecycleService = Depends(get_service),
):
    summary = service.get_summary(past_meeting_uid, summary_uid)
    set_etag(response, summary)
    return summary


@router.put("/{past_meeting_uid}/summaries/{summary_uid}", response_model=PastMeetingSummary)
def update_summary(
    past_meeting_uid: UUID,
    summary_uid: UUID,
    data: SummaryUpdate,
    response: Response,
    if_match: str | None = Header(default=None),
    service: MeetingLifecycleService = Depends(get_service),
):
    """Edit or approve a summary. Only the edited_* fields and approval change."""
    summary = service.update_summary(past_meeting_uid, summary_uid, data, if_match)
    set_etag(response, summary)
    return summary


@router.post("/{past_meeting_uid}/attachments", response_model=Attachment, status_code=201)
def add_attachment(
    past_meeting_uid: UUID,
    data: AttachmentCreate,
    caller: str | None = Depends(get_caller),
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.add_attachment(data, past_meeting_uid=past_meeting_uid, caller=caller)


@router.get("/{past_meeting_uid}/attachments", response_model=list[Attachment])
def list_attachments(
    past_meeting_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    return service.list_attachments(past_meeting_uid=past_meeting_uid)


@router.delete("/{past_meeting_uid}/attachments/{attachment_uid}", status_code=204)
def delete_attachment(
    past_meeting_uid: UUID,
    attachment_uid: UUID,
    service: MeetingLifecycleService = Depends(get_service),
):
    service.delete_attachment(attachment_uid, past_meeting_uid=past_meeting_uid)
