"""Unit tests for the Reconciler."""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, call

import pytest

from processor.event_processor import EventProcessor
from processor.models import LinkedUser, ScheduledEvent
from sync.reconciler import Reconciler

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
START = datetime(2024, 6, 10, 19, 0, tzinfo=timezone.utc)


def api_event(event_id, name='Game Night', status=1):
    return {
        'id': event_id,
        'guild_id': '789',
        'name': name,
        'description': None,
        'scheduled_start_time': START.isoformat(),
        'scheduled_end_time': (START + timedelta(hours=2)).isoformat(),
        'creator_id': '42',
        'entity_metadata': None,
        'status': status
    }


def stored_event(event_id, name='Game Night', end_time=START + timedelta(hours=2)):
    return ScheduledEvent(
        event_id=event_id,
        name=name,
        description=None,
        start_time=START,
        end_time=end_time,
        creator_id='42',
        location=None,
        recurrence=None,
        url=f"https://discord.com/events/789/{event_id}"
    )


@pytest.fixture
def users():
    return [
        LinkedUser(user_id='u1', access_token='t1', refresh_token='r1', expires_at=0),
        LinkedUser(user_id='u2', access_token='t2', refresh_token='r2', expires_at=0),
    ]


@pytest.fixture
def collaborators(users):
    credentials = Mock()
    credentials.list_linked_users_with_fresh_tokens = AsyncMock(return_value=users)
    return {
        'event_source': Mock(),
        'mirror_store': Mock(),
        'publisher': Mock(),
        'credentials': credentials,
    }


@pytest.fixture
def reconciler(collaborators):
    return Reconciler(guild_id='789', processor=EventProcessor(), **collaborators)


class TestReconcile:
    """Test cases for Reconciler.reconcile."""

    def test_applies_diff_to_mirror_and_calendars(self, reconciler, collaborators):
        """Test removed, updated and added events reach every calendar."""
        collaborators['event_source'].fetch_events.return_value = [
            api_event('keep'),
            api_event('rename', name='Renamed'),
            api_event('fresh'),
        ]
        collaborators['mirror_store'].read_snapshot.return_value = [
            stored_event('keep'),
            stored_event('rename'),
            stored_event('gone', end_time=NOW + timedelta(days=1)),
            stored_event('expired', end_time=NOW - timedelta(days=1)),
        ]

        result = asyncio.run(reconciler.reconcile(now=NOW))

        assert (result.added, result.updated, result.removed) == (1, 1, 1)
        assert result.errors == []

        mirror = collaborators['mirror_store']
        mirror.remove_event.assert_called_once_with('gone')
        assert [c.args[0].event_id for c in mirror.update_event.call_args_list] == ['rename']
        assert [c.args[0].event_id for c in mirror.insert_event.call_args_list] == ['fresh']

        publisher = collaborators['publisher']
        publisher.remove.assert_has_calls(
            [call('t1', 'gone'), call('t2', 'gone')], any_order=True
        )
        assert publisher.remove.call_count == 2
        upserts = sorted(
            (c.args[0], c.args[1].event_id) for c in publisher.upsert.call_args_list
        )
        assert upserts == [('t1', 'fresh'), ('t1', 'rename'), ('t2', 'fresh'), ('t2', 'rename')]

    def test_no_changes(self, reconciler, collaborators, caplog):
        """Test nothing is written when snapshots match."""
        collaborators['event_source'].fetch_events.return_value = [api_event('keep')]
        collaborators['mirror_store'].read_snapshot.return_value = [stored_event('keep')]

        with caplog.at_level(logging.INFO, logger='sync.reconciler'):
            result = asyncio.run(reconciler.reconcile(now=NOW))

        assert 'No changes to apply' in caplog.text
        assert result.errors == []
        assert (result.added, result.updated, result.removed) == (0, 0, 0)
        collaborators['mirror_store'].insert_event.assert_not_called()
        collaborators['publisher'].upsert.assert_not_called()
        collaborators['publisher'].remove.assert_not_called()

    def test_mirror_updated_without_linked_users(self, reconciler, collaborators):
        """Test the mirror is kept current even with nobody linked."""
        collaborators['credentials'].list_linked_users_with_fresh_tokens.return_value = []
        collaborators['event_source'].fetch_events.return_value = [api_event('fresh')]
        collaborators['mirror_store'].read_snapshot.return_value = []

        result = asyncio.run(reconciler.reconcile(now=NOW))

        assert result.added == 1
        collaborators['mirror_store'].insert_event.assert_called_once()
        collaborators['publisher'].upsert.assert_not_called()

    def test_failures_are_isolated(self, reconciler, collaborators):
        """Test one failed operation does not stop the others."""
        collaborators['event_source'].fetch_events.return_value = [
            api_event('a'), api_event('b')
        ]
        collaborators['mirror_store'].read_snapshot.return_value = []

        def insert_event(event):
            if event.event_id == 'a':
                raise RuntimeError('db down')

        def upsert(token, event):
            if token == 't1' and event.event_id == 'b':
                raise RuntimeError('quota')

        collaborators['mirror_store'].insert_event.side_effect = insert_event
        collaborators['publisher'].upsert.side_effect = upsert

        result = asyncio.run(reconciler.reconcile(now=NOW))

        assert result.added == 2
        assert sorted(result.errors) == [
            'calendar upsert b for user u1 failed: quota',
            'mirror write a failed: db down',
        ]
        assert collaborators['publisher'].upsert.call_count == 4
        assert collaborators['mirror_store'].insert_event.call_count == 2

    def test_fetch_failure_aborts_before_writes(self, reconciler, collaborators):
        """Test a failed fetch leaves the mirror and calendars untouched."""
        collaborators['event_source'].fetch_events.side_effect = ConnectionError('down')

        with pytest.raises(ConnectionError):
            asyncio.run(reconciler.reconcile(now=NOW))

        collaborators['mirror_store'].read_snapshot.assert_not_called()
        collaborators['publisher'].upsert.assert_not_called()


class TestRealtimeHandlers:
    """Test cases for single-event handlers."""

    def test_event_created(self, reconciler, collaborators):
        """Test a created event is mirrored and published to every user."""
        collaborators['event_source'].fetch_event.return_value = api_event('new')

        result = asyncio.run(reconciler.handle_event_created('new'))

        assert result.added == 1
        collaborators['event_source'].fetch_event.assert_called_once_with('789', 'new')
        collaborators['mirror_store'].insert_event.assert_called_once_with(stored_event('new'))
        assert collaborators['publisher'].upsert.call_count == 2

    def test_event_created_but_gone(self, reconciler, collaborators):
        """Test nothing happens if the event vanished before it was fetched."""
        collaborators['event_source'].fetch_event.return_value = None

        result = asyncio.run(reconciler.handle_event_created('new'))

        assert result.added == 0
        collaborators['publisher'].upsert.assert_not_called()

    def test_event_updated(self, reconciler, collaborators):
        """Test an edited event is re-published."""
        collaborators['event_source'].fetch_event.return_value = api_event('e1', name='Edited')

        result = asyncio.run(reconciler.handle_event_updated('e1'))

        assert result.updated == 1
        updated = collaborators['mirror_store'].update_event.call_args.args[0]
        assert updated.name == 'Edited'
        assert collaborators['publisher'].upsert.call_count == 2

    @pytest.mark.parametrize('status', [3, 4])
    def test_event_finished(self, reconciler, collaborators, status):
        """Test completed or canceled events are removed."""
        collaborators['event_source'].fetch_event.return_value = api_event('e1', status=status)

        result = asyncio.run(reconciler.handle_event_updated('e1'))

        assert result.removed == 1
        collaborators['mirror_store'].remove_event.assert_called_once_with('e1')
        collaborators['publisher'].remove.assert_has_calls(
            [call('t1', 'e1'), call('t2', 'e1')], any_order=True
        )
        collaborators['publisher'].upsert.assert_not_called()

    def test_event_updated_but_gone(self, reconciler, collaborators):
        """Test an event that can no longer be fetched is removed everywhere."""
        collaborators['event_source'].fetch_event.return_value = None

        result = asyncio.run(reconciler.handle_event_updated('e1'))

        assert result.removed == 1
        assert result.updated == 0
        collaborators['mirror_store'].remove_event.assert_called_once_with('e1')
        collaborators['mirror_store'].update_event.assert_not_called()
        collaborators['publisher'].remove.assert_has_calls(
            [call('t1', 'e1'), call('t2', 'e1')], any_order=True
        )
        collaborators['publisher'].upsert.assert_not_called()

    def test_event_deleted(self, reconciler, collaborators):
        """Test a deleted event is removed everywhere."""
        result = asyncio.run(reconciler.handle_event_deleted('e1'))

        assert result.removed == 1
        assert result.errors == []
        collaborators['mirror_store'].remove_event.assert_called_once_with('e1')
        assert collaborators['publisher'].remove.call_count == 2
