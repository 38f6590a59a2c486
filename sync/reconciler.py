"""Reconciliation of guild scheduled events with the mirror and calendars."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from auth.credentials import CredentialSupplier
from processor.event_diff import diff_events
from processor.event_processor import EventProcessor
from processor.models import LinkedUser, ScheduledEvent, SyncResult
from publisher.google_calendar import GoogleCalendarPublisher
from scraper.discord_events import DiscordEventsClient
from storage.dynamodb_manager import EventMirrorStore

logger = logging.getLogger(__name__)

# (description, awaitable) pairs awaited together as one batch
Operation = Tuple[str, Awaitable[Any]]


class Reconciler:
    """
    Keeps the event mirror and every linked calendar in line with the
    guild's scheduled events.

    Collaborators are blocking clients; each call runs in a worker
    thread so that a whole batch of operations is in flight at once.
    At most one run is expected at a time. Nothing here locks against
    overlapping runs.
    """

    def __init__(
        self,
        guild_id: str,
        event_source: DiscordEventsClient,
        processor: EventProcessor,
        mirror_store: EventMirrorStore,
        publisher: GoogleCalendarPublisher,
        credentials: CredentialSupplier
    ):
        self.guild_id = guild_id
        self.event_source = event_source
        self.processor = processor
        self.mirror_store = mirror_store
        self.publisher = publisher
        self.credentials = credentials

    async def reconcile(self, now: Optional[datetime] = None) -> SyncResult:
        """
        Run one full reconciliation.

        Fetching and diffing complete before any write is issued. Writes
        are then issued together and awaited as a single batch; a failed
        write is logged and recorded without affecting the others.

        Args:
            now: Evaluation instant for expired-event detection

        Returns:
            SyncResult with counts and per-operation error messages
        """
        users = await self.credentials.list_linked_users_with_fresh_tokens()

        logger.info("Fetching current events")
        payloads = await asyncio.to_thread(
            self.event_source.fetch_events, self.guild_id
        )
        new_events = self.processor.process_events(payloads, self.guild_id)

        logger.info("Retrieving previous events")
        old_events = await asyncio.to_thread(self.mirror_store.read_snapshot)

        diff = diff_events(old_events, new_events, now=now)
        if diff.is_empty():
            logger.info("No changes to apply")
            return SyncResult(added=0, updated=0, removed=0, errors=[])

        logger.info(
            f"Sync plan: {len(diff.removed)} to remove, "
            f"{len(diff.updated)} to update, "
            f"{len(diff.added)} to add, for {len(users)} users"
        )

        operations: List[Operation] = []
        for event in diff.removed:
            operations.extend(self._remove_operations(event.event_id, users))
        for event in diff.updated:
            operations.extend(
                self._upsert_operations(event, users, self.mirror_store.update_event)
            )
        for event in diff.added:
            operations.extend(
                self._upsert_operations(event, users, self.mirror_store.insert_event)
            )

        errors = await self._run_batch(operations)

        logger.info(
            f"Sync complete: {len(diff.added)} added, {len(diff.updated)} updated, "
            f"{len(diff.removed)} removed, {len(errors)} errors"
        )
        return SyncResult(
            added=len(diff.added),
            updated=len(diff.updated),
            removed=len(diff.removed),
            errors=errors
        )

    async def handle_event_created(self, event_id: str) -> SyncResult:
        """Mirror and publish a newly created scheduled event."""
        payload = await asyncio.to_thread(
            self.event_source.fetch_event, self.guild_id, event_id
        )
        if payload is None:
            logger.warning(f"Created event {event_id} could not be fetched")
            return SyncResult(added=0, updated=0, removed=0, errors=[])

        event = self.processor.transform_event(payload, self.guild_id)
        users = await self.credentials.list_linked_users_with_fresh_tokens()
        errors = await self._run_batch(
            self._upsert_operations(event, users, self.mirror_store.insert_event)
        )
        return SyncResult(added=1, updated=0, removed=0, errors=errors)

    async def handle_event_updated(self, event_id: str) -> SyncResult:
        """
        Re-publish an edited scheduled event.

        Events that were completed, canceled or no longer exist are
        removed instead.
        """
        payload = await asyncio.to_thread(
            self.event_source.fetch_event, self.guild_id, event_id
        )
        if payload is None or self.processor.is_finished(payload):
            return await self.handle_event_deleted(event_id)

        event = self.processor.transform_event(payload, self.guild_id)
        users = await self.credentials.list_linked_users_with_fresh_tokens()
        errors = await self._run_batch(
            self._upsert_operations(event, users, self.mirror_store.update_event)
        )
        return SyncResult(added=0, updated=1, removed=0, errors=errors)

    async def handle_event_deleted(self, event_id: str) -> SyncResult:
        """Remove a scheduled event from the mirror and every calendar."""
        users = await self.credentials.list_linked_users_with_fresh_tokens()
        errors = await self._run_batch(self._remove_operations(event_id, users))
        return SyncResult(added=0, updated=0, removed=1, errors=errors)

    def _remove_operations(
        self,
        event_id: str,
        users: List[LinkedUser]
    ) -> List[Operation]:
        operations = [(
            f"mirror remove {event_id}",
            asyncio.to_thread(self.mirror_store.remove_event, event_id)
        )]
        for user in users:
            operations.append((
                f"calendar remove {event_id} for user {user.user_id}",
                asyncio.to_thread(self.publisher.remove, user.access_token, event_id)
            ))
        return operations

    def _upsert_operations(
        self,
        event: ScheduledEvent,
        users: List[LinkedUser],
        mirror_write: Callable[[ScheduledEvent], None]
    ) -> List[Operation]:
        operations = [(
            f"mirror write {event.event_id}",
            asyncio.to_thread(mirror_write, event)
        )]
        for user in users:
            operations.append((
                f"calendar upsert {event.event_id} for user {user.user_id}",
                asyncio.to_thread(self.publisher.upsert, user.access_token, event)
            ))
        return operations

    async def _run_batch(self, operations: List[Operation]) -> List[str]:
        """Await every operation and collect the failures."""
        if not operations:
            return []

        results = await asyncio.gather(
            *(awaitable for _, awaitable in operations),
            return_exceptions=True
        )

        errors = []
        for (description, _), result in zip(operations, results):
            if isinstance(result, Exception):
                error_msg = f"{description} failed: {result}"
                logger.error(error_msg)
                errors.append(error_msg)
        return errors
