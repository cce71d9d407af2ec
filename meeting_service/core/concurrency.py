"""Optimistic concurrency control for versioned entities.

Every mutable table carries an integer ``version`` column. Callers send
back the version they last read (exposed as an ETag); a write only lands
if the stored version still matches, enforced by a conditional
``UPDATE ... WHERE version = :expected`` so that two writers racing on
the same row cannot both succeed.

``KeyedLocks`` provides the per-key serialization used for RSVP
submission (per registrant) and webhook reconciliation (per meeting
occurrence).
"""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import inspect, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel

from meeting_service.core.clock import utcnow
from meeting_service.core.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=SQLModel)


class KeyedLocks:
    """Mutual exclusion per string key.

    Locks are created on first use and dropped once nobody holds or waits
    on them, so the table does not grow with the number of keys ever seen.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]


def format_version(version: int) -> str:
    """Render a version as an ETag value."""
    return f'"{version}"'


def parse_version(token: str | int | None) -> int | None:
    """Parse an ETag / If-Match value (or a bare integer) into a version."""
    if token is None:
        return None
    if isinstance(token, int):
        return token
    raw = token.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Malformed version token: {token!r}") from None


class ConcurrencyGuard:
    """Applies create / mutate / delete under version discipline.

    The guard only flushes; committing the surrounding transaction is the
    caller's job so that a root entity and its dependent counters land
    together.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, entity: T) -> T:
        """Insert a new entity at version 1.

        Raises:
            ConflictError: If a uniqueness constraint is violated.
        """
        entity.version = 1
        self.session.add(entity)
        self._flush(f"{type(entity).__name__} already exists")
        return entity

    def mutate(
        self,
        entity: T,
        expected_version: str | int | None,
        mutation: Callable[[T], None],
    ) -> T:
        """Apply ``mutation`` if the caller's version is still current.

        Raises:
            ValidationError: If no version precondition was supplied.
            ConflictError: If the stored version moved on, or the mutation
                violates a uniqueness constraint.
        """
        expected = parse_version(expected_version)
        if expected is None:
            raise ValidationError("A version precondition is required for this update")
        if entity.version != expected:
            logger.info(
                f"Rejected stale write to {type(entity).__name__}: "
                f"expected version {expected}, stored {entity.version}"
            )
            raise ConflictError(
                f"{type(entity).__name__} has already been modified",
                precondition_failed=True,
            )
        return self._advance(entity, mutation)

    def touch(self, entity: T, mutation: Callable[[T], None]) -> T:
        """Apply an internal mutation against the version just read.

        Used by writers that own the entity (webhook reconciliation, counter
        maintenance) and therefore have no client-supplied precondition.
        """
        return self._advance(entity, mutation)

    def delete(self, entity: T, expected_version: str | int | None) -> None:
        expected = parse_version(expected_version)
        if expected is None:
            raise ValidationError("A version precondition is required for this delete")
        if entity.version != expected:
            raise ConflictError(
                f"{type(entity).__name__} has already been modified",
                precondition_failed=True,
            )
        self._bump(entity, entity.version)
        self.session.delete(entity)
        self._flush(f"{type(entity).__name__} is still referenced")

    def _advance(self, entity: T, mutation: Callable[[T], None]) -> T:
        current = entity.version
        mutation(entity)
        self._bump(entity, current)
        entity.version = current + 1
        if hasattr(entity, "updated_at"):
            entity.updated_at = utcnow()
        self.session.add(entity)
        self._flush(f"{type(entity).__name__} conflicts with an existing record")
        return entity

    def _bump(self, entity: SQLModel, current: int) -> None:
        model = type(entity)
        table = model.__table__
        conditions = [
            column == getattr(entity, column.key)
            for column in inspect(model).primary_key
        ]
        result = self.session.connection().execute(
            update(table)
            .where(*conditions, table.c.version == current)
            .values(version=current + 1)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"{model.__name__} has already been modified",
                precondition_failed=True,
            )

    def _flush(self, conflict_message: str) -> None:
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            logger.info(f"Uniqueness violation: {e.orig}")
            raise ConflictError(conflict_message) from e


# Shared by every request and job in this process
locks = KeyedLocks()
