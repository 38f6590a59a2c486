"""DynamoDB mirror of guild scheduled events."""
import logging
from datetime import timedelta
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import ScheduledEvent
from processor.recurrence import parse_datetime

logger = logging.getLogger(__name__)


class EventMirrorStore:
    """Manager for the scheduled event mirror table."""

    TTL_DAYS = 90

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table (hash key ``event_id``)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized EventMirrorStore for table: {table_name}")

    def get_all_events(self) -> Dict[str, ScheduledEvent]:
        """
        Retrieve all mirrored events using Scan operation.

        Returns:
            Dictionary mapping event_id to ScheduledEvent objects
        """
        logger.info("Scanning DynamoDB table for all events")
        events = {}

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            for item in items:
                event = self._item_to_event(item)
                if event:
                    events[event.event_id] = event

            logger.info(f"Retrieved {len(events)} events from DynamoDB")
            return events

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

    def read_snapshot(self) -> List[ScheduledEvent]:
        """Return the previously mirrored snapshot as a list."""
        return list(self.get_all_events().values())

    def insert_event(self, event: ScheduledEvent) -> None:
        """Insert an event, overwriting any existing item with the same id."""
        self._put_event(event)
        logger.info(f"Inserted event {event.event_id}")

    def update_event(self, event: ScheduledEvent) -> None:
        """Overwrite an event, creating it if it is missing."""
        self._put_event(event)
        logger.info(f"Updated event {event.event_id}")

    def remove_event(self, event_id: str) -> None:
        """
        Delete an event from the mirror.

        Args:
            event_id: ID of the event to delete
        """
        try:
            self.table.delete_item(Key={'event_id': event_id})
        except ClientError as e:
            logger.error(f"Error deleting event {event_id}: {e}")
            raise
        logger.info(f"Removed event {event_id}")

    def _put_event(self, event: ScheduledEvent) -> None:
        try:
            self.table.put_item(Item=self._event_to_item(event))
        except ClientError as e:
            logger.error(f"Error writing event {event.event_id}: {e}")
            raise

    def _item_to_event(self, item: dict) -> Optional[ScheduledEvent]:
        """
        Convert DynamoDB item to ScheduledEvent object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            ScheduledEvent object or None if conversion fails
        """
        try:
            return ScheduledEvent(
                event_id=item['event_id'],
                name=item['name'],
                description=item.get('description'),
                start_time=parse_datetime(item['start_time']),
                end_time=parse_datetime(item.get('end_time')),
                creator_id=item.get('creator_id'),
                location=item.get('location'),
                recurrence=item.get('recurrence'),
                url=item.get('url')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to ScheduledEvent: {e}")
            return None

    def _event_to_item(self, event: ScheduledEvent) -> dict:
        """
        Convert ScheduledEvent object to DynamoDB item.

        Args:
            event: ScheduledEvent object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'event_id': event.event_id,
            'name': event.name,
            'start_time': event.start_time.isoformat(),
        }

        # Add optional fields if present
        if event.description is not None:
            item['description'] = event.description
        if event.end_time is not None:
            item['end_time'] = event.end_time.isoformat()
        if event.creator_id is not None:
            item['creator_id'] = event.creator_id
        if event.location is not None:
            item['location'] = event.location
        if event.recurrence is not None:
            item['recurrence'] = event.recurrence
        if event.url is not None:
            item['url'] = event.url

        # One-off events that have ended are never diffed as removed, so let
        # the table expire them. Recurring rows stay until Discord drops them.
        if event.end_time is not None and event.recurrence is None:
            item['ttl'] = int((event.end_time + timedelta(days=self.TTL_DAYS)).timestamp())

        return item
