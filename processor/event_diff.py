"""Diffing of two scheduled event snapshots."""
from datetime import datetime, time, timezone
from typing import Dict, Iterable, List, Optional

from processor.models import DiffResult, ScheduledEvent


def _index(events: Iterable[ScheduledEvent]) -> Dict[str, ScheduledEvent]:
    return {event.event_id: event for event in events}


def _time_of_day(instant: Optional[datetime]) -> Optional[time]:
    if instant is None:
        return None
    return instant.astimezone(timezone.utc).time().replace(microsecond=0)


def get_removed_events(
    old_events: List[ScheduledEvent],
    new_events: List[ScheduledEvent],
    now: Optional[datetime] = None
) -> List[ScheduledEvent]:
    """
    Events that disappeared from the source and have not already ended.

    An event whose end time has passed expired naturally and is left alone.

    Args:
        old_events: Previously known snapshot
        new_events: Freshly fetched snapshot
        now: Evaluation instant (defaults to the current UTC time)

    Returns:
        Events from old_events to remove
    """
    now = now or datetime.now(timezone.utc)
    new_by_id = _index(new_events)
    return [
        event for event in old_events
        if event.event_id not in new_by_id
        # Ended events are left in the mirror; one-off rows carry a ttl
        and not (event.end_time is not None and event.end_time < now)
    ]


def events_differ(old: ScheduledEvent, new: ScheduledEvent) -> bool:
    """
    Decide whether a known event changed enough to be pushed again.

    Metadata is compared by value. Start and end are compared by
    time-of-day only, so a recurring event rolling over to its next
    occurrence date is not reported as changed.
    """
    if (
        old.name != new.name or
        old.description != new.description or
        old.creator_id != new.creator_id or
        old.location != new.location or
        old.recurrence != new.recurrence
    ):
        return True

    return (
        _time_of_day(old.start_time) != _time_of_day(new.start_time) or
        _time_of_day(old.end_time) != _time_of_day(new.end_time)
    )


def get_updated_events(
    old_events: List[ScheduledEvent],
    new_events: List[ScheduledEvent]
) -> List[ScheduledEvent]:
    """Events present in both snapshots whose content changed."""
    old_by_id = _index(old_events)
    return [
        event for event in new_events
        if event.event_id in old_by_id
        and events_differ(old_by_id[event.event_id], event)
    ]


def get_added_events(
    old_events: List[ScheduledEvent],
    new_events: List[ScheduledEvent]
) -> List[ScheduledEvent]:
    """Events present only in the new snapshot."""
    old_by_id = _index(old_events)
    return [event for event in new_events if event.event_id not in old_by_id]


def diff_events(
    old_events: List[ScheduledEvent],
    new_events: List[ScheduledEvent],
    now: Optional[datetime] = None
) -> DiffResult:
    """Compute removed, updated and added events between two snapshots."""
    return DiffResult(
        removed=get_removed_events(old_events, new_events, now=now),
        updated=get_updated_events(old_events, new_events),
        added=get_added_events(old_events, new_events),
    )
