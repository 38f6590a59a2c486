"""AWS Lambda handler for Guild Scheduled Event Calendar Sync."""
import asyncio
import json
import logging
import os
import time
from typing import Dict, Any

from auth.credentials import CredentialSupplier, TokenRefresher
from processor.event_processor import EventProcessor
from publisher.google_calendar import GoogleCalendarPublisher
from scraper.discord_events import DiscordEventsClient
from storage.dynamodb_manager import EventMirrorStore
from storage.linked_users import LinkedUserStore
from sync.reconciler import Reconciler

REQUIRED_ENV_VARS = (
    'DISCORD_BOT_TOKEN',
    'GUILD_ID',
    'GOOGLE_CLIENT_ID',
    'GOOGLE_CLIENT_SECRET',
)

EVENT_ACTIONS = ('event_created', 'event_updated', 'event_deleted')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_config() -> Dict[str, Any]:
    """
    Read configuration from environment variables.

    Returns:
        Configuration dictionary

    Raises:
        KeyError: If a required variable is missing or empty
    """
    missing = [name for name in REQUIRED_ENV_VARS if not os.environ.get(name)]
    if missing:
        raise KeyError(f"Missing environment variables: {', '.join(missing)}")

    return {
        'discord_token': os.environ['DISCORD_BOT_TOKEN'],
        'guild_id': os.environ['GUILD_ID'],
        'google_client_id': os.environ['GOOGLE_CLIENT_ID'],
        'google_client_secret': os.environ['GOOGLE_CLIENT_SECRET'],
        'table_name': os.environ.get('TABLE_NAME', 'guild-scheduled-events'),
        'users_table_name': os.environ.get('USERS_TABLE_NAME', 'calendar-linked-users'),
        'time_zone': os.environ.get('CALENDAR_TIME_ZONE', 'UTC'),
        'token_skew_seconds': int(os.environ.get('TOKEN_SKEW_SECONDS', '60')),
        'timeout_seconds': int(os.environ.get('TIMEOUT_SECONDS', '30')),
    }


def build_reconciler(config: Dict[str, Any]) -> Reconciler:
    """Wire the reconciler and its collaborators from configuration."""
    timeout = config['timeout_seconds']
    return Reconciler(
        guild_id=config['guild_id'],
        event_source=DiscordEventsClient(config['discord_token'], timeout=timeout),
        processor=EventProcessor(),
        mirror_store=EventMirrorStore(table_name=config['table_name']),
        publisher=GoogleCalendarPublisher(
            time_zone=config['time_zone'],
            timeout=timeout
        ),
        credentials=CredentialSupplier(
            user_store=LinkedUserStore(table_name=config['users_table_name']),
            refresher=TokenRefresher(
                config['google_client_id'],
                config['google_client_secret'],
                timeout=timeout
            ),
            skew_seconds=config['token_skew_seconds']
        )
    )


def _error_response(message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    duration = time.time() - start_time
    return {
        'statusCode': 500,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Guild Scheduled Event Calendar Sync.

    The default action reconciles every event. Gateway notifications can
    instead pass ``{"action": "event_created" | "event_updated" |
    "event_deleted", "event_id": "..."}`` to sync a single event.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = (event or {}).get('action', 'reconcile')
    logger.info(f"Lambda execution started", extra={'action': action})

    try:
        config = load_config()
    except (KeyError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return _error_response('Invalid configuration', e, start_time)

    if action != 'reconcile' and (action not in EVENT_ACTIONS or not event.get('event_id')):
        error = ValueError(f"Unsupported action or missing event_id: {action}")
        logger.error(str(error))
        return _error_response('Invalid request', error, start_time)

    try:
        reconciler = build_reconciler(config)

        if action == 'reconcile':
            logger.info("Reconciling guild scheduled events")
            sync_result = asyncio.run(reconciler.reconcile())
        else:
            handler = getattr(reconciler, f"handle_{action}")
            logger.info(f"Handling {action} for event {event['event_id']}")
            sync_result = asyncio.run(handler(event['event_id']))

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response('Sync failed', e, start_time)

    duration = time.time() - start_time

    logger.info(
        f"Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'events_added': sync_result.added,
            'events_updated': sync_result.updated,
            'events_removed': sync_result.removed,
            'errors': sync_result.errors
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sync completed successfully',
            'action': action,
            'statistics': {
                'events_added': sync_result.added,
                'events_updated': sync_result.updated,
                'events_removed': sync_result.removed,
                'duration_seconds': round(duration, 2)
            },
            'errors': sync_result.errors
        })
    }
