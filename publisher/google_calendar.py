"""Google Calendar projection of guild scheduled events."""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from processor.models import ScheduledEvent

logger = logging.getLogger(__name__)


class CalendarRequestError(Exception):
    """Google Calendar API returned an unexpected status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Google Calendar request failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class GoogleCalendarPublisher:
    """Writes scheduled events into users' Google calendars."""

    BASE_URL = "https://www.googleapis.com/calendar/v3"
    DEFAULT_DURATION = timedelta(hours=1)

    def __init__(
        self,
        time_zone: str = 'UTC',
        timeout: int = 30,
        calendar_id: str = 'primary'
    ):
        """
        Initialize the publisher.

        Args:
            time_zone: IANA time zone stamped on calendar entries
            timeout: HTTP request timeout in seconds (default: 30)
            calendar_id: Target calendar of every user (default: primary)
        """
        self.time_zone = time_zone
        self.timeout = timeout
        self.calendar_id = calendar_id

    def build_event_body(self, event: ScheduledEvent) -> Dict[str, Any]:
        """
        Build a Google Calendar event resource.

        The Discord event id doubles as the calendar entry id. Events
        without an end time last DEFAULT_DURATION.

        Args:
            event: ScheduledEvent to project

        Returns:
            Event resource dictionary
        """
        end_time = event.end_time or event.start_time + self.DEFAULT_DURATION

        description = event.description or ''
        if event.url:
            description = f"{description}\n\n{event.url}" if description else event.url

        body = {
            'id': event.event_id,
            'summary': event.name,
            'description': description,
            'start': {
                'dateTime': event.start_time.isoformat(),
                'timeZone': self.time_zone
            },
            'end': {
                'dateTime': end_time.isoformat(),
                'timeZone': self.time_zone
            }
        }

        if event.location:
            body['location'] = event.location
        if event.recurrence:
            body['recurrence'] = [event.recurrence]

        return body

    def upsert(self, access_token: str, event: ScheduledEvent) -> None:
        """
        Create a calendar entry, updating it in place if it already exists.

        Args:
            access_token: OAuth access token of the user
            event: ScheduledEvent to write
        """
        response = self._request(
            'POST',
            self._events_path(),
            access_token,
            json=self.build_event_body(event)
        )

        if response.status_code == 409:
            # Entries deleted in the UI linger as cancelled and keep their id
            logger.info(f"Event {event.event_id} already exists, updating instead")
            self.update(access_token, event)
            return

        self._raise_for_status(response)
        logger.debug(f"Created calendar event {event.event_id}")

    def update(self, access_token: str, event: ScheduledEvent) -> None:
        """Overwrite an existing calendar entry."""
        response = self._request(
            'PUT',
            self._events_path(event.event_id),
            access_token,
            json=self.build_event_body(event)
        )
        self._raise_for_status(response)
        logger.debug(f"Updated calendar event {event.event_id}")

    def remove(self, access_token: str, event_id: str) -> None:
        """
        Delete a calendar entry. Already-deleted entries are ignored.

        Args:
            access_token: OAuth access token of the user
            event_id: ID of the entry to delete
        """
        response = self._request(
            'DELETE',
            self._events_path(event_id),
            access_token
        )

        if response.status_code in (404, 410):
            logger.debug(f"Calendar event {event_id} already gone")
            return

        self._raise_for_status(response)
        logger.debug(f"Removed calendar event {event_id}")

    def _events_path(self, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{quote(self.calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        json: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        return requests.request(
            method,
            f"{self.BASE_URL}{path}",
            headers={'Authorization': f"Bearer {access_token}"},
            json=json,
            timeout=self.timeout
        )

    def _raise_for_status(self, response: requests.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        message = response.text
        try:
            error = response.json().get('error')
        except (AttributeError, ValueError):
            error = None
        if isinstance(error, dict) and error.get('message'):
            message = error['message']
        raise CalendarRequestError(response.status_code, message)
