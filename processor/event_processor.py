"""Event processor for normalizing Discord guild scheduled events."""
import logging
from typing import Any, Dict, List, Optional

from processor.models import ScheduledEvent
from processor.recurrence import (
    convert_recurrence_rule,
    parse_datetime,
    parse_recurrence_rule,
)

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for turning Discord API payloads into ScheduledEvents."""

    EVENT_URL_TEMPLATE = "https://discord.com/events/{guild_id}/{event_id}"

    # GuildScheduledEventStatus values that mean the event is over
    STATUS_COMPLETED = 3
    STATUS_CANCELED = 4

    def process_events(
        self,
        payloads: List[Dict[str, Any]],
        guild_id: str
    ) -> List[ScheduledEvent]:
        """
        Transform raw guild scheduled events into ScheduledEvents.

        Args:
            payloads: Raw event objects from the Discord API
            guild_id: Guild the events belong to

        Returns:
            List of ScheduledEvent objects
        """
        events = []

        for payload in payloads:
            try:
                events.append(self.transform_event(payload, guild_id))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Failed to process event '{payload.get('id')}': {e}"
                )
                continue

        logger.info(
            f"Processed {len(events)} valid events out of "
            f"{len(payloads)} total events"
        )
        return events

    def transform_event(
        self,
        payload: Dict[str, Any],
        guild_id: Optional[str] = None
    ) -> ScheduledEvent:
        """
        Transform a single guild scheduled event.

        Args:
            payload: Raw event object from the Discord API
            guild_id: Guild the event belongs to; defaults to the
                payload's guild_id

        Returns:
            ScheduledEvent object

        Raises:
            KeyError: If id, name or scheduled_start_time is missing
            ValueError: If a timestamp or recurrence code is invalid
        """
        event_id = payload['id']
        guild_id = guild_id or payload.get('guild_id')
        entity_metadata = payload.get('entity_metadata') or {}

        return ScheduledEvent(
            event_id=event_id,
            name=payload['name'],
            description=payload.get('description'),
            start_time=parse_datetime(payload['scheduled_start_time']),
            end_time=parse_datetime(payload.get('scheduled_end_time')),
            creator_id=payload.get('creator_id'),
            location=entity_metadata.get('location'),
            recurrence=convert_recurrence_rule(
                parse_recurrence_rule(payload.get('recurrence_rule'))
            ),
            url=self.EVENT_URL_TEMPLATE.format(
                guild_id=guild_id,
                event_id=event_id
            )
        )

    def is_finished(self, payload: Dict[str, Any]) -> bool:
        """Check whether a raw event has been completed or canceled."""
        return payload.get('status') in (
            self.STATUS_COMPLETED,
            self.STATUS_CANCELED
        )
