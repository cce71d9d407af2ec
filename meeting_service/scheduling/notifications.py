"""Notification hooks.

The service only decides that someone must be told about a change;
rendering and delivery belong to whatever Notifier is plugged in.
"""

import logging
from typing import Protocol

from meeting_service.models.meeting import Meeting
from meeting_service.models.registrant import Registrant

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def registrant_invited(self, meeting: Meeting, registrant: Registrant) -> None: ...

    def invitation_resent(self, meeting: Meeting, registrant: Registrant) -> None: ...

    def registrant_removed(self, meeting: Meeting, registrant: Registrant) -> None: ...

    def occurrence_cancelled(
        self, meeting: Meeting, occurrence_id: str, registrants: list[Registrant]
    ) -> None: ...

    def meeting_cancelled(self, meeting: Meeting, registrants: list[Registrant]) -> None: ...


class LoggingNotifier:
    """Notifier that only records the decision in the log."""

    def registrant_invited(self, meeting, registrant):
        logger.info(f"Invite {registrant.email} to meeting {meeting.uid}")

    def invitation_resent(self, meeting, registrant):
        logger.info(f"Resend invitation to {registrant.email} for meeting {meeting.uid}")

    def registrant_removed(self, meeting, registrant):
        logger.info(f"Notify {registrant.email} of removal from meeting {meeting.uid}")

    def occurrence_cancelled(self, meeting, occurrence_id, registrants):
        logger.info(
            f"Notify {len(registrants)} registrants that occurrence {occurrence_id} "
            f"of meeting {meeting.uid} is cancelled"
        )

    def meeting_cancelled(self, meeting, registrants):
        logger.info(
            f"Notify {len(registrants)} registrants that meeting {meeting.uid} is cancelled"
        )
