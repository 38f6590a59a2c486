"""Client for Discord guild scheduled events."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class DiscordEventsClient:
    """Fetches guild scheduled events from the Discord REST API."""

    BASE_URL = "https://discord.com/api/v10"
    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, token: str, timeout: int = 30):
        """
        Initialize the Discord client.

        Args:
            token: Bot token used for authentication
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f"Bot {token}",
            'User-Agent': 'DiscordBot (guild-calendar-sync, 1.0)'
        })

    def fetch_events(self, guild_id: str) -> List[Dict[str, Any]]:
        """
        Fetch all scheduled events of a guild.

        Args:
            guild_id: Guild to list events for

        Returns:
            List of raw guild scheduled event objects
        """
        logger.info(f"Fetching scheduled events for guild {guild_id}")
        response = self._get(f"/guilds/{guild_id}/scheduled-events")
        events = response.json()
        logger.info(f"Successfully fetched {len(events)} events")
        return events

    def fetch_event(
        self,
        guild_id: str,
        event_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch a single scheduled event, including its recurrence rule.

        Args:
            guild_id: Guild the event belongs to
            event_id: Scheduled event ID

        Returns:
            Raw guild scheduled event object, or None if it no longer exists
        """
        try:
            response = self._get(
                f"/guilds/{guild_id}/scheduled-events/{event_id}"
            )
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                logger.info(f"Scheduled event {event_id} no longer exists")
                return None
            raise
        return response.json()

    def _get(self, path: str) -> requests.Response:
        """
        GET a Discord API path with retry logic.

        Args:
            path: API path relative to BASE_URL

        Returns:
            Successful response

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                response = self.session.get(
                    f"{self.BASE_URL}{path}",
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response

            except requests.RequestException as e:
                # A missing resource will not appear on retry
                if (
                    isinstance(e, requests.HTTPError)
                    and e.response is not None
                    and e.response.status_code == 404
                ):
                    raise
                if attempt < self.MAX_RETRIES - 1:
                    # Calculate exponential backoff delay
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise
