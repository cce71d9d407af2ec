from meeting_service.models.artifact import Attachment, PastMeetingArtifact
from meeting_service.models.meeting import Meeting, MeetingSettings, Recurrence
from meeting_service.models.occurrence import Occurrence, OccurrenceState
from meeting_service.models.participant import ParticipantSession, PastMeetingParticipant
from meeting_service.models.past_meeting import PastMeeting, PastMeetingSession, PastMeetingState
from meeting_service.models.registrant import Registrant
from meeting_service.models.rsvp import RSVP, OccurrenceResponse, RSVPResponse, RSVPScope
from meeting_service.models.summary import PastMeetingSummary

__all__ = [
    "Attachment",
    "Meeting",
    "MeetingSettings",
    "Occurrence",
    "OccurrenceResponse",
    "OccurrenceState",
    "ParticipantSession",
    "PastMeeting",
    "PastMeetingArtifact",
    "PastMeetingParticipant",
    "PastMeetingSession",
    "PastMeetingState",
    "PastMeetingSummary",
    "RSVP",
    "RSVPResponse",
    "RSVPScope",
    "Recurrence",
    "Registrant",
]
