"""Translation of Discord recurrence rules into RFC 5545 RRULE strings."""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from processor.models import NWeekday, RecurrenceRule

FREQUENCIES = {
    0: 'YEARLY',
    1: 'MONTHLY',
    2: 'WEEKLY',
    3: 'DAILY',
}

WEEKDAYS = {
    0: 'MO',
    1: 'TU',
    2: 'WE',
    3: 'TH',
    4: 'FR',
    5: 'SA',
    6: 'SU',
}


def get_frequency_string(frequency: int) -> str:
    """
    Map a Discord frequency code to its RRULE FREQ value.

    Args:
        frequency: Discord frequency code (0-3)

    Returns:
        RRULE frequency name

    Raises:
        ValueError: If the code is not a known frequency
    """
    try:
        return FREQUENCIES[frequency]
    except KeyError:
        raise ValueError(f"Unknown recurrence frequency: {frequency!r}") from None


def get_weekday_string(weekday: int) -> str:
    """
    Map a Discord weekday code (Monday = 0) to its RRULE day code.

    Raises:
        ValueError: If the code is not a known weekday
    """
    try:
        return WEEKDAYS[weekday]
    except KeyError:
        raise ValueError(f"Unknown recurrence weekday: {weekday!r}") from None


def format_until(instant: datetime) -> str:
    """Render an instant as a compact UTC timestamp (YYYYMMDDTHHMMSSZ)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def _join(values: Iterable[Any]) -> str:
    return ','.join(str(value) for value in values)


def convert_recurrence_rule(rule: Optional[RecurrenceRule]) -> Optional[str]:
    """
    Convert a Discord recurrence rule into a single RRULE line.

    Fields are emitted in a fixed order. Plain weekdays and n-th weekdays
    are rendered as two separate BYDAY parts. List values keep the order
    they were supplied in.

    Args:
        rule: Recurrence rule, or None for one-shot events

    Returns:
        RRULE string, or None when there is no rule
    """
    if rule is None:
        return None

    parts = [
        f"FREQ={get_frequency_string(rule.frequency)}",
        f"INTERVAL={rule.interval}",
    ]

    if rule.by_weekday:
        parts.append(
            'BYDAY=' + _join(get_weekday_string(day) for day in rule.by_weekday)
        )
    if rule.by_n_weekday:
        parts.append(
            'BYDAY=' + _join(
                f"{entry.n}{get_weekday_string(entry.day)}"
                for entry in rule.by_n_weekday
            )
        )
    if rule.by_month:
        parts.append('BYMONTH=' + _join(rule.by_month))
    if rule.by_month_day:
        parts.append('BYMONTHDAY=' + _join(rule.by_month_day))
    if rule.by_year_day:
        parts.append('BYYEARDAY=' + _join(rule.by_year_day))

    if rule.end is not None:
        parts.append(f"UNTIL={format_until(rule.end)}")
    elif rule.count is not None:
        parts.append(f"COUNT={rule.count}")

    return 'RRULE:' + ';'.join(parts)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp from the Discord API into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_recurrence_rule(payload: Optional[Dict[str, Any]]) -> Optional[RecurrenceRule]:
    """
    Build a RecurrenceRule from the ``recurrence_rule`` object of a
    Discord guild scheduled event.

    Args:
        payload: Raw recurrence_rule dictionary, or None

    Returns:
        RecurrenceRule, or None when the event does not repeat
    """
    if not payload:
        return None

    by_n_weekday = payload.get('by_n_weekday')
    return RecurrenceRule(
        frequency=payload['frequency'],
        interval=payload.get('interval', 1),
        start=parse_datetime(payload.get('start')),
        end=parse_datetime(payload.get('end')),
        count=payload.get('count'),
        by_weekday=payload.get('by_weekday'),
        by_n_weekday=[
            NWeekday(n=entry['n'], day=entry['day']) for entry in by_n_weekday
        ] if by_n_weekday else None,
        by_month=payload.get('by_month'),
        by_month_day=payload.get('by_month_day'),
        by_year_day=payload.get('by_year_day'),
    )
