"""DynamoDB storage of users linked to a Google calendar."""
import logging
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import LinkedUser

logger = logging.getLogger(__name__)


class LinkedUserStore:
    """Manager for the linked user table."""

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table (hash key ``user_id``)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def get_linked_users(self) -> List[LinkedUser]:
        """
        Retrieve every user who has linked a Google calendar.

        Returns:
            List of LinkedUser objects
        """
        scan_kwargs = {
            'FilterExpression': Attr('is_linked_to_calendar').eq(True)
        }
        try:
            response = self.table.scan(**scan_kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning linked users: {e}")
            raise

        users = [
            user for user in (self._item_to_user(item) for item in items)
            if user
        ]
        logger.info(f"Retrieved {len(users)} linked users")
        return users

    def update_user_token(self, user: LinkedUser) -> None:
        """
        Persist a refreshed access token.

        Args:
            user: User carrying the new access token and expiry
        """
        try:
            self.table.update_item(
                Key={'user_id': user.user_id},
                UpdateExpression='SET access_token = :token, expires_at = :expires',
                ExpressionAttributeValues={
                    ':token': user.access_token,
                    ':expires': user.expires_at
                }
            )
        except ClientError as e:
            logger.error(f"Error updating token for user {user.user_id}: {e}")
            raise

    def _item_to_user(self, item: dict) -> Optional[LinkedUser]:
        try:
            return LinkedUser(
                user_id=item['user_id'],
                access_token=item.get('access_token', ''),
                refresh_token=item['refresh_token'],
                expires_at=int(item.get('expires_at', 0))
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping linked user without usable token: {e}")
            return None
