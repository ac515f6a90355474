from calendar import monthrange
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from roombook.core.exceptions import BookingValidationError
from roombook.schemas.recurrence import RecurrenceRule, RecurrenceType

# Upper bound on calendar periods scanned, so sparse rules (e.g. the 31st
# every 12 months from April) cannot loop forever.
MAX_PERIODS_SCANNED = 1200


@dataclass(frozen=True)
class Slot:
    start_time: datetime
    end_time: datetime


def _zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise BookingValidationError(f"Unknown timezone: {timezone_name}") from None


def _sunday_based_to_iso(day: int) -> int:
    # 0=Sunday..6=Saturday -> date.weekday() (0=Monday..6=Sunday)
    return (day - 1) % 7


class _Collector:
    def __init__(self, local_start: datetime, duration: timedelta, rule: RecurrenceRule,
                 until: date | None, limit: int) -> None:
        self.local_start = local_start
        self.duration = duration
        self.rule = rule
        self.until = until
        self.limit = limit
        self.slots: list[Slot] = []

    @property
    def done(self) -> bool:
        return self.rule.count is not None and len(self.slots) >= self.rule.count

    def past_end(self, day: date) -> bool:
        return self.until is not None and day > self.until

    def add(self, day: date) -> None:
        local = datetime.combine(day, self.local_start.time(), tzinfo=self.local_start.tzinfo)
        start = local.astimezone(UTC)
        self.slots.append(Slot(start_time=start, end_time=start + self.duration))
        if len(self.slots) + 1 > self.limit:
            raise BookingValidationError(
                f"Recurring series would exceed {self.limit} occurrences",
                detail={"max_occurrences": self.limit},
            )


def _expand_weekly(collector: _Collector) -> None:
    local_start = collector.local_start
    rule = collector.rule
    if rule.days_of_week:
        weekdays = sorted(_sunday_based_to_iso(day) for day in rule.days_of_week)
    else:
        weekdays = [local_start.weekday()]

    week_anchor = local_start.date() - timedelta(days=local_start.weekday())
    for period in range(0, MAX_PERIODS_SCANNED * rule.interval, rule.interval):
        week_start = week_anchor + timedelta(weeks=period)
        if collector.past_end(week_start):
            return
        for weekday in weekdays:
            day = week_start + timedelta(days=weekday)
            if day <= local_start.date():
                continue
            if collector.past_end(day):
                return
            collector.add(day)
            if collector.done:
                return


def _expand_monthly(collector: _Collector) -> None:
    local_start = collector.local_start
    rule = collector.rule
    target_day = rule.day_of_month or local_start.day

    for offset in range(0, MAX_PERIODS_SCANNED * rule.interval, rule.interval):
        years, month_index = divmod(local_start.month - 1 + offset, 12)
        year, month = local_start.year + years, month_index + 1
        if collector.past_end(date(year, month, 1)):
            return
        if target_day > monthrange(year, month)[1]:
            # Months without the requested day are skipped, not clamped.
            continue
        day = date(year, month, target_day)
        if day <= local_start.date():
            continue
        if collector.past_end(day):
            return
        collector.add(day)
        if collector.done:
            return


def expand_recurrence(
    start_time: datetime,
    end_time: datetime,
    rule: RecurrenceRule,
    *,
    until: date | None,
    timezone_name: str,
    limit: int,
) -> list[Slot]:
    """Expand a recurring request into concrete slots, first slot included.

    Repetitions keep the wall-clock start time in the room's timezone, so a
    weekly 09:00 meeting stays at 09:00 across DST changes. ``until`` is an
    inclusive local date; expansion stops at ``until`` or after ``rule.count``
    repetitions, whichever comes first.
    """
    if until is None and rule.count is None:
        raise BookingValidationError("Recurring bookings need recurrence_end_date or a repetition count")

    zone = _zone(timezone_name)
    local_start = start_time.astimezone(zone)
    if until is not None and until < local_start.date():
        raise BookingValidationError("recurrence_end_date must not be before the first occurrence")

    collector = _Collector(
        local_start=local_start,
        duration=end_time - start_time,
        rule=rule,
        until=until,
        limit=limit,
    )
    if rule.type is RecurrenceType.WEEKLY:
        _expand_weekly(collector)
    else:
        _expand_monthly(collector)

    first = Slot(start_time=start_time.astimezone(UTC), end_time=end_time.astimezone(UTC))
    return [first, *collector.slots]
