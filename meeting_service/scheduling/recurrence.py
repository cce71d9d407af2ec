"""Expand recurrence rules into occurrence start times.

Rules follow the conferencing-platform convention:

    type 1 = daily, 2 = weekly, 3 = monthly
    weekday codes 1-7, where 1 is Sunday (weeks start on Sunday)

Expansion happens on wall-clock time in the meeting's timezone, so a
10:00 meeting stays at 10:00 local across DST changes, and the results
are converted back to UTC. Series without ``end_times`` or
``end_date_time`` are unbounded; they are generated lazily and can only be
materialized with a horizon or a limit.
"""

import calendar
import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime, timedelta
from itertools import islice
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from meeting_service.core.clock import as_utc
from meeting_service.core.errors import ValidationError
from meeting_service.models.meeting import Recurrence

logger = logging.getLogger(__name__)

DAILY = 1
WEEKLY = 2
MONTHLY = 3

LAST_WEEK = -1


def occurrence_id(start: datetime) -> str:
    """Stable id of an occurrence: unix seconds of its nominal start."""
    return str(int(as_utc(start).timestamp()))


def occurrence_start(occurrence_id_: str) -> datetime:
    """Inverse of ``occurrence_id``.

    Raises:
        ValidationError: If the id is not a unix timestamp.
    """
    try:
        return datetime.fromtimestamp(int(occurrence_id_), UTC)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid occurrence id: {occurrence_id_!r}") from None


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Look up an IANA timezone, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, expanding in UTC")
        return ZoneInfo("UTC")


def parse_weekly_days(value: str | None) -> list[int]:
    """Parse "2,4" into sorted, distinct weekday codes."""
    if not value:
        return []
    codes = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            code = int(part)
        except ValueError:
            raise ValidationError(f"Invalid weekday code: {part!r}") from None
        if not 1 <= code <= 7:
            raise ValidationError(f"Weekday code out of range (1-7): {code}")
        codes.add(code)
    return sorted(codes)


def validate_rule(rule: Recurrence) -> None:
    """Reject malformed or contradictory rules.

    Raises:
        ValidationError: Describing the first problem found.
    """
    if rule.type not in (DAILY, WEEKLY, MONTHLY):
        raise ValidationError(f"Unknown recurrence type: {rule.type}")
    if rule.repeat_interval < 1:
        raise ValidationError("repeat_interval must be at least 1")
    if rule.end_times is not None and rule.end_date_time is not None:
        raise ValidationError("end_times and end_date_time are mutually exclusive")
    if rule.end_times is not None and rule.end_times < 1:
        raise ValidationError("end_times must be at least 1")

    if rule.type == WEEKLY and not parse_weekly_days(rule.weekly_days):
        raise ValidationError("Weekly recurrence requires weekly_days")

    if rule.type == MONTHLY:
        if rule.monthly_day is not None and rule.monthly_week is not None:
            raise ValidationError("monthly_day and monthly_week are mutually exclusive")
        if rule.monthly_day is not None and not 1 <= rule.monthly_day <= 31:
            raise ValidationError("monthly_day must be between 1 and 31")
        if rule.monthly_week is not None:
            if rule.monthly_week not in (LAST_WEEK, 1, 2, 3, 4):
                raise ValidationError("monthly_week must be -1 or 1-4")
            if rule.monthly_week_day is None:
                raise ValidationError("monthly_week requires monthly_week_day")
        if rule.monthly_week_day is not None:
            if rule.monthly_week is None:
                raise ValidationError("monthly_week_day requires monthly_week")
            if not 1 <= rule.monthly_week_day <= 7:
                raise ValidationError("monthly_week_day must be between 1 and 7")


def _python_weekday(code: int) -> int:
    # code 1 (Sunday) -> 6, code 2 (Monday) -> 0
    return (code - 2) % 7


def _week_start(day: date) -> date:
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _nth_weekday(year: int, month: int, week: int, code: int) -> date:
    weekday = _python_weekday(code)
    if week == LAST_WEEK:
        last = calendar.monthrange(year, month)[1]
        last_date = date(year, month, last)
        return last_date - timedelta(days=(last_date.weekday() - weekday) % 7)
    first = date(year, month, 1)
    return first + timedelta(days=(weekday - first.weekday()) % 7 + 7 * (week - 1))


def _month_from_index(index: int) -> tuple[int, int]:
    return index // 12, index % 12 + 1


class RecurrenceExpander:
    """Lazy generator of occurrence starts for one rule and anchor.

    The series is generated period by period (a day, a week or a month,
    times ``repeat_interval``). Because every period is computed from its
    index alone, iteration can resume at any date without walking the
    periods before it.
    """

    def __init__(self, rule: Recurrence, anchor: datetime, timezone: str | None = "UTC"):
        validate_rule(rule)
        self.rule = rule
        self.anchor = as_utc(anchor)
        self.tz = resolve_timezone(timezone)
        local = self.anchor.astimezone(self.tz)
        self.anchor_date = local.date()
        self.wall_time = local.time().replace(tzinfo=None)
        self.weekly_days = parse_weekly_days(rule.weekly_days)
        self.end = as_utc(rule.end_date_time)

    @property
    def bounded(self) -> bool:
        return self.rule.end_times is not None or self.end is not None

    def _period_dates(self, k: int) -> list[date]:
        rule = self.rule
        if rule.type == DAILY:
            return [self.anchor_date + timedelta(days=k * rule.repeat_interval)]
        if rule.type == WEEKLY:
            start = _week_start(self.anchor_date) + timedelta(weeks=k * rule.repeat_interval)
            return [start + timedelta(days=code - 1) for code in self.weekly_days]

        index = self.anchor_date.year * 12 + self.anchor_date.month - 1
        year, month = _month_from_index(index + k * rule.repeat_interval)
        if rule.monthly_week is not None:
            return [_nth_weekday(year, month, rule.monthly_week, rule.monthly_week_day)]
        day = rule.monthly_day or self.anchor_date.day
        return [date(year, month, min(day, calendar.monthrange(year, month)[1]))]

    def _period_index(self, day: date) -> int:
        """Index of the period containing ``day`` (never negative)."""
        rule = self.rule
        if day <= self.anchor_date:
            return 0
        if rule.type == DAILY:
            return (day - self.anchor_date).days // rule.repeat_interval
        if rule.type == WEEKLY:
            weeks = (_week_start(day) - _week_start(self.anchor_date)).days // 7
            return weeks // rule.repeat_interval
        months = (day.year - self.anchor_date.year) * 12 + day.month - self.anchor_date.month
        return months // rule.repeat_interval

    def _to_utc(self, day: date) -> datetime:
        return datetime.combine(day, self.wall_time, tzinfo=self.tz).astimezone(UTC)

    def __iter__(self) -> Iterator[datetime]:
        return self.iter_from()

    def iter_from(self, start: datetime | None = None) -> Iterator[datetime]:
        """Yield occurrence starts at or after ``start`` in ascending order.

        Counted series (``end_times``) always walk from the first period,
        since the count depends on everything before ``start``.
        """
        start = as_utc(start)
        k = 0
        if start is not None and self.rule.end_times is None:
            k = self._period_index(start.astimezone(self.tz).date())

        produced = 0
        while True:
            for day in self._period_dates(k):
                if day < self.anchor_date:
                    continue
                when = self._to_utc(day)
                if self.end is not None and when > self.end:
                    return
                produced += 1
                if start is None or when >= start:
                    yield when
                if self.rule.end_times is not None and produced >= self.rule.end_times:
                    return
            k += 1


def iter_occurrences(
    rule: Recurrence | None,
    anchor: datetime,
    timezone: str | None = "UTC",
    start: datetime | None = None,
) -> Iterator[datetime]:
    """Lazy occurrence starts; a meeting without a rule has just its anchor."""
    if rule is None:
        anchor = as_utc(anchor)
        if start is None or anchor >= as_utc(start):
            yield anchor
        return
    yield from RecurrenceExpander(rule, anchor, timezone).iter_from(start)


def expand(
    rule: Recurrence | None,
    anchor: datetime,
    horizon: datetime | None = None,
    timezone: str | None = "UTC",
    limit: int | None = None,
    start: datetime | None = None,
) -> list[datetime]:
    """Materialize occurrence starts.

    Args:
        rule: Recurrence rule, or None for a single meeting.
        anchor: Start of the first occurrence.
        horizon: Inclusive upper bound on start times.
        timezone: IANA timezone the rule is evaluated in.
        limit: Maximum number of starts to return.
        start: Resume point; earlier starts are skipped.

    Raises:
        ValidationError: If the rule is invalid, or unbounded with neither
            a horizon nor a limit.
    """
    if rule is not None:
        expander = RecurrenceExpander(rule, anchor, timezone)
        if not expander.bounded and horizon is None and limit is None:
            raise ValidationError("An unbounded series needs a horizon or a limit")
    horizon = as_utc(horizon)
    starts = iter_occurrences(rule, anchor, timezone, start)
    if horizon is not None:
        starts = _until(starts, horizon)
    return list(islice(starts, limit))


def _until(starts: Iterator[datetime], horizon: datetime) -> Iterator[datetime]:
    for when in starts:
        if when > horizon:
            return
        yield when


def check_timezone(name: str) -> str:
    """Validate an IANA timezone name.

    Raises:
        ValidationError: If the name is unknown.
    """
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {name!r}") from None
    return name
