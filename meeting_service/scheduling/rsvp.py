"""RSVP scope resolution and response counters.

Submitted RSVPs are appended and never changed. For each occurrence the
effective response of a registrant is the most recently submitted RSVP
whose scope covers that occurrence, so precedence is decided occurrence
by occurrence: a later "single" decline punches a hole into an earlier
"all" accept without disturbing the other occurrences.

The effective response per (registrant, occurrence) is materialized in
OccurrenceResponse. Counters on OccurrenceState are only ever moved by
comparing the old and new effective response, which keeps each
registrant counted at most once per occurrence.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlmodel import Session, select

from meeting_service.core.clock import as_utc, utcnow
from meeting_service.core.concurrency import KeyedLocks
from meeting_service.core.errors import NotFoundError, ValidationError
from meeting_service.models.meeting import Meeting
from meeting_service.models.occurrence import OccurrenceState
from meeting_service.models.registrant import Registrant
from meeting_service.models.rsvp import (
    RSVP,
    OccurrenceResponse,
    RSVPCreate,
    RSVPOutcome,
    RSVPResponse,
    RSVPScope,
)
from meeting_service.scheduling.occurrences import OccurrenceStore
from meeting_service.scheduling.recurrence import occurrence_start

logger = logging.getLogger(__name__)

COUNTER_FIELDS = {
    RSVPResponse.ACCEPTED: "accepted_count",
    RSVPResponse.DECLINED: "declined_count",
    RSVPResponse.MAYBE: "maybe_count",
}
CLOCK_SKEW = timedelta(seconds=5)


class RSVPResolver:
    """Applies RSVPs and keeps the per-occurrence counters in step."""

    def __init__(
        self,
        session: Session,
        occurrences: OccurrenceStore,
        locks: KeyedLocks,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.occurrences = occurrences
        self.locks = locks
        self.clock = clock

    def resolve_registrant(
        self, meeting: Meeting, data: RSVPCreate, caller: str | None
    ) -> Registrant:
        """Find the registrant an RSVP is submitted for.

        Raises:
            ValidationError: If no registrant can be identified.
            NotFoundError: If the registrant is not registered for the meeting.
        """
        if data.registrant_uid is not None:
            registrant = self.session.get(Registrant, data.registrant_uid)
            if registrant is None or registrant.meeting_uid != meeting.uid:
                raise NotFoundError(f"Registrant {data.registrant_uid} not found")
            return registrant

        username = data.username or caller
        if not username:
            raise ValidationError("RSVP requires a registrant_uid, a username or a caller identity")
        registrant = self.session.exec(
            select(Registrant).where(
                Registrant.meeting_uid == meeting.uid, Registrant.username == username
            )
        ).first()
        if registrant is None:
            raise NotFoundError(f"No registrant with username {username!r} for this meeting")
        return registrant

    def scope_targets(self, meeting: Meeting, data: RSVPCreate) -> list[str]:
        """Occurrence ids an RSVP's scope reaches, before supersession.

        Raises:
            ValidationError: If the occurrence id is missing, present where
                it must be empty, or not a resolvable occurrence.
        """
        if data.scope == RSVPScope.ALL:
            if data.occurrence_id:
                raise ValidationError("occurrence_id must be empty for scope 'all'")
        else:
            if not data.occurrence_id:
                raise ValidationError(f"occurrence_id is required for scope '{data.scope.value}'")
            occurrence_start(data.occurrence_id)

        active = [occ.occurrence_id for occ in self.occurrences.active(meeting)]
        if data.scope == RSVPScope.ALL:
            return active
        if data.occurrence_id not in active:
            raise ValidationError(
                f"Occurrence {data.occurrence_id} is not a resolvable occurrence of this meeting"
            )
        if data.scope == RSVPScope.SINGLE:
            return [data.occurrence_id]
        pivot = int(data.occurrence_id)
        return [occ_id for occ_id in active if int(occ_id) >= pivot]

    def apply(
        self,
        meeting: Meeting,
        registrant: Registrant,
        data: RSVPCreate,
        submitted_by: str | None = None,
    ) -> RSVPOutcome:
        """Record an RSVP and settle the occurrences it reaches.

        Runs as one read-modify-write per registrant: submissions for the
        same registrant are serialized and committed before the next one
        reads the registrant's RSVP history.
        """
        with self.locks.hold(f"rsvp:{registrant.uid}"):
            targets = [
                occ_id
                for occ_id in self.scope_targets(meeting, data)
                if registrant.covers(occ_id)
            ]
            if not targets:
                raise ValidationError("The RSVP does not cover any occurrence of this registrant")

            submitted_at, sequence = self._submission(registrant, data)
            rsvp = RSVP(
                meeting_uid=meeting.uid,
                registrant_uid=registrant.uid,
                username=registrant.username,
                email=registrant.email,
                response=data.response,
                scope=data.scope,
                occurrence_id=data.occurrence_id,
                submitted_by=submitted_by,
                submitted_at=submitted_at,
                sequence=sequence,
            )
            self.session.add(rsvp)
            self.session.flush()

            deltas = self.settle(meeting, registrant, targets)
            effective = self._effective(registrant, targets)
            affected = [occ_id for occ_id in targets if effective.get(occ_id) == rsvp.uid]
            superseded = [occ_id for occ_id in targets if occ_id not in affected]
            self.session.commit()
            self.session.refresh(rsvp)

        logger.info(
            f"RSVP {rsvp.uid} ({data.response.value}, {data.scope.value}) from registrant "
            f"{registrant.uid}: {len(affected)} affected, {len(superseded)} superseded"
        )
        return RSVPOutcome(rsvp=rsvp, affected=affected, superseded=superseded, deltas=deltas)

    def _submission(self, registrant: Registrant, data: RSVPCreate) -> tuple[datetime, int]:
        now = self.clock()
        submitted_at = as_utc(data.submitted_at) if data.submitted_at is not None else now
        if submitted_at > now + CLOCK_SKEW:
            raise ValidationError("submitted_at cannot be in the future")
        count = len(
            self.session.exec(select(RSVP.uid).where(RSVP.registrant_uid == registrant.uid)).all()
        )
        return submitted_at, count + 1

    def _history(self, registrant: Registrant) -> list[RSVP]:
        rows = self.session.exec(
            select(RSVP).where(RSVP.registrant_uid == registrant.uid)
        ).all()
        return sorted(rows, key=lambda r: (as_utc(r.submitted_at), r.sequence))

    def _effective(self, registrant: Registrant, occurrence_ids: Iterable[str]):
        ids = list(occurrence_ids)
        rows = self.session.exec(
            select(OccurrenceResponse).where(
                OccurrenceResponse.registrant_uid == registrant.uid,
                OccurrenceResponse.occurrence_id.in_(ids),
            )
        ).all()
        return {row.occurrence_id: row.rsvp_uid for row in rows}

    def settle(
        self, meeting: Meeting, registrant: Registrant, occurrence_ids: Iterable[str]
    ) -> dict[str, dict[str, int]]:
        """Recompute the effective response for the given occurrences.

        Returns:
            Counter deltas per occurrence id, keyed by response value.
            Occurrences whose effective response did not change are absent.
        """
        ids = list(dict.fromkeys(occurrence_ids))
        history = self._history(registrant)
        existing = {
            row.occurrence_id: row
            for row in self.session.exec(
                select(OccurrenceResponse).where(
                    OccurrenceResponse.registrant_uid == registrant.uid,
                    OccurrenceResponse.occurrence_id.in_(ids),
                )
            ).all()
        }

        deltas: dict[str, dict[str, int]] = defaultdict(dict)
        for occ_id in ids:
            winner = None
            if registrant.covers(occ_id):
                for rsvp in history:
                    if rsvp.covers(occ_id):
                        winner = rsvp
            current = existing.get(occ_id)

            if winner is None:
                if current is not None:
                    self._count(meeting, occ_id, current.response, -1, deltas)
                    self.session.delete(current)
                continue
            if current is None:
                self.session.add(
                    OccurrenceResponse(
                        meeting_uid=meeting.uid,
                        registrant_uid=registrant.uid,
                        occurrence_id=occ_id,
                        rsvp_uid=winner.uid,
                        response=winner.response,
                        submitted_at=winner.submitted_at,
                    )
                )
                self._count(meeting, occ_id, winner.response, 1, deltas)
                continue
            if current.rsvp_uid == winner.uid:
                continue
            if current.response != winner.response:
                self._count(meeting, occ_id, current.response, -1, deltas)
                self._count(meeting, occ_id, winner.response, 1, deltas)
            current.rsvp_uid = winner.uid
            current.response = winner.response
            current.submitted_at = winner.submitted_at
            self.session.add(current)

        self.session.flush()
        return dict(deltas)

    def _count(self, meeting: Meeting, occ_id: str, response, step: int, deltas) -> None:
        response = RSVPResponse(response)
        field = COUNTER_FIELDS[response]
        state = self.occurrences.ensure_state(meeting.uid, occ_id)
        table = OccurrenceState.__table__
        counter = table.c[field]
        conditions = [table.c.meeting_uid == meeting.uid, table.c.occurrence_id == occ_id]
        if step < 0:
            conditions.append(counter >= -step)
        result = self.session.connection().execute(
            update(table).where(*conditions).values({field: counter + step})
        )
        if result.rowcount != 1:
            logger.warning(
                f"{field} of occurrence {occ_id} (meeting {meeting.uid}) would drop below zero, "
                f"left at its current value"
            )
        self.session.expire(state, [field])
        deltas[occ_id][response.value] = deltas[occ_id].get(response.value, 0) + step

    def withdraw(self, meeting: Meeting, registrant: Registrant) -> dict[str, dict[str, int]]:
        """Remove a registrant's effective responses from every counter.

        The RSVP rows themselves stay as history.
        """
        rows = self.session.exec(
            select(OccurrenceResponse).where(OccurrenceResponse.registrant_uid == registrant.uid)
        ).all()
        deltas: dict[str, dict[str, int]] = defaultdict(dict)
        for row in rows:
            self._count(meeting, row.occurrence_id, row.response, -1, deltas)
            self.session.delete(row)
        self.session.flush()
        return dict(deltas)

    @contextmanager
    def hold_registrants(self, meeting: Meeting) -> Iterator[list[Registrant]]:
        """Hold the RSVP lock of every registrant of a meeting.

        Locks are taken in uid order so that two holders cannot deadlock.
        Commit before leaving the block.
        """
        registrants = sorted(
            self.session.exec(select(Registrant).where(Registrant.meeting_uid == meeting.uid)).all(),
            key=lambda r: str(r.uid),
        )
        with ExitStack() as stack:
            for registrant in registrants:
                stack.enter_context(self.locks.hold(f"rsvp:{registrant.uid}"))
            yield registrants

    def resettle(self, meeting: Meeting, registrants: Iterable[Registrant]) -> int:
        """Settle registrants against the currently active occurrences.

        Used after rule edits and by the periodic window refresh, so that
        occurrences entering the horizon pick up earlier "all" and
        "this_and_following" RSVPs. Runs inside the caller's transaction,
        with the registrants held through hold_registrants().

        Returns:
            Number of occurrence counters that changed.
        """
        active = [occ.occurrence_id for occ in self.occurrences.active(meeting)]
        if not active:
            return 0
        return sum(len(self.settle(meeting, registrant, active)) for registrant in registrants)

    def list_for_meeting(self, meeting: Meeting) -> list[RSVP]:
        return list(
            self.session.exec(
                select(RSVP)
                .where(RSVP.meeting_uid == meeting.uid)
                .order_by(RSVP.submitted_at, RSVP.sequence)
            ).all()
        )
