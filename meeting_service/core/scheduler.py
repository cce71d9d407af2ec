"""Background job scheduler for occurrence window refreshes."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session, select

from meeting_service.core.clock import utcnow
from meeting_service.core.concurrency import locks
from meeting_service.core.config import settings
from meeting_service.core.database import engine
from meeting_service.models import Meeting
from meeting_service.scheduling.occurrences import OccurrenceStore
from meeting_service.scheduling.rsvp import RSVPResolver

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def refresh_occurrence_windows(session: Session, clock=utcnow) -> dict:
    """
    Re-settle RSVP counters of every live recurring meeting.

    Occurrences of unbounded series enter the horizon as time passes; an
    earlier "all" or "this_and_following" RSVP must be counted on them too.

    Returns dict with refresh statistics.
    """
    meetings = session.exec(
        select(Meeting).where(
            Meeting.deleted_at == None,  # noqa: E711
            Meeting.recurrence != None,  # noqa: E711
        )
    ).all()
    occurrences = OccurrenceStore(session, clock)
    resolver = RSVPResolver(session, occurrences, locks, clock)

    stats = {"meetings": 0, "counters": 0}
    for meeting in meetings:
        if meeting.recurrence_rule is None:
            continue
        stats["meetings"] += 1
        with resolver.hold_registrants(meeting) as registrants:
            stats["counters"] += resolver.resettle(meeting, registrants)
            session.commit()
    return stats


def refresh_job():
    """Background refresh job."""
    try:
        with Session(engine) as session:
            stats = refresh_occurrence_windows(session)
            logger.info(f"Occurrence refresh completed: {stats}")
    except Exception as e:
        logger.error(f"Occurrence refresh failed: {e}")


def start_scheduler():
    """Start the background scheduler."""
    scheduler.add_job(
        refresh_job,
        trigger=IntervalTrigger(minutes=settings.occurrence_refresh_interval_minutes),
        id="occurrence_refresh",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, refreshing occurrences every "
        f"{settings.occurrence_refresh_interval_minutes} minutes"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
