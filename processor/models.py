"""Data models for scheduled event reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class NWeekday:
    """N-th weekday of a period (e.g. first Monday)."""
    n: int
    day: int


@dataclass(frozen=True)
class RecurrenceRule:
    """Platform-native recurrence description of a scheduled event."""
    frequency: int
    interval: int
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    count: Optional[int] = None
    by_weekday: Optional[List[int]] = None
    by_n_weekday: Optional[List[NWeekday]] = None
    by_month: Optional[List[int]] = None
    by_month_day: Optional[List[int]] = None
    by_year_day: Optional[List[int]] = None


@dataclass(frozen=True)
class ScheduledEvent:
    """Canonical guild scheduled event."""
    event_id: str
    name: str
    description: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    creator_id: Optional[str]
    location: Optional[str]
    recurrence: Optional[str]
    url: Optional[str] = None


@dataclass
class DiffResult:
    """Events to remove, update and add in one reconciliation run."""
    removed: List[ScheduledEvent] = field(default_factory=list)
    updated: List[ScheduledEvent] = field(default_factory=list)
    added: List[ScheduledEvent] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.removed or self.updated or self.added)


@dataclass
class LinkedUser:
    """User whose Google calendar receives guild events."""
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: int


@dataclass
class SyncResult:
    """Result of sync operation."""
    added: int
    updated: int
    removed: int
    errors: list[str]
