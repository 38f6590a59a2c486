"""Google OAuth access tokens for linked users."""
import asyncio
import dataclasses
import logging
import time
from typing import List, Optional, Tuple

import requests
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import LinkedUser
from storage.linked_users import LinkedUserStore

logger = logging.getLogger(__name__)


class TokenRefresher:
    """Exchanges refresh tokens for new Google access tokens."""

    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(self, client_id: str, client_secret: str, timeout: int = 30):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    def refresh_access_token(self, refresh_token: str) -> Optional[Tuple[str, int]]:
        """
        Request a new access token.

        Args:
            refresh_token: Long-lived refresh token of the user

        Returns:
            Tuple of (access_token, expires_at epoch seconds), or None if
            the refresh was rejected
        """
        try:
            response = requests.post(
                self.TOKEN_URL,
                data={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'refresh_token': refresh_token,
                    'grant_type': 'refresh_token'
                },
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Token refresh request failed: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"Token refresh rejected with status {response.status_code}")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Token endpoint returned invalid JSON")
            return None

        access_token = payload.get('access_token')
        expires_in = payload.get('expires_in')
        if not isinstance(access_token, str) or not isinstance(expires_in, int):
            logger.warning("Token response is missing access_token or expires_in")
            return None

        return access_token, int(time.time()) + expires_in


class CredentialSupplier:
    """Supplies linked users whose access tokens are usable for this run."""

    MIN_SKEW_SECONDS = 60

    def __init__(
        self,
        user_store: LinkedUserStore,
        refresher: TokenRefresher,
        skew_seconds: int = MIN_SKEW_SECONDS
    ):
        if skew_seconds < self.MIN_SKEW_SECONDS:
            raise ValueError(
                f"skew_seconds must be at least {self.MIN_SKEW_SECONDS}"
            )
        self.user_store = user_store
        self.refresher = refresher
        self.skew_seconds = skew_seconds

    async def list_linked_users_with_fresh_tokens(self) -> List[LinkedUser]:
        """
        List linked users, refreshing tokens close to expiry.

        Users whose refresh fails are left out of the result. They stay
        linked in storage and are retried on the next run.

        Returns:
            Users with an access token valid for at least the skew window
        """
        users = await asyncio.to_thread(self.user_store.get_linked_users)
        deadline = int(time.time()) + self.skew_seconds

        refreshed = await asyncio.gather(*(
            self._refresh(user) if user.expires_at < deadline
            else self._keep(user)
            for user in users
        ))
        fresh_users = [user for user in refreshed if user is not None]

        dropped = len(users) - len(fresh_users)
        if dropped:
            logger.warning(f"Dropped {dropped} users whose token refresh failed")
        logger.info(f"{len(fresh_users)} linked users ready for sync")
        return fresh_users

    async def _keep(self, user: LinkedUser) -> LinkedUser:
        return user

    async def _refresh(self, user: LinkedUser) -> Optional[LinkedUser]:
        result = await asyncio.to_thread(
            self.refresher.refresh_access_token, user.refresh_token
        )
        if result is None:
            logger.warning(f"Could not refresh token for user {user.user_id}")
            return None

        access_token, expires_at = result
        fresh_user = dataclasses.replace(
            user,
            access_token=access_token,
            expires_at=expires_at
        )
        try:
            await asyncio.to_thread(self.user_store.update_user_token, fresh_user)
        except (BotoCoreError, ClientError) as e:
            # The new token is still valid for this run
            logger.error(f"Failed to persist token for user {user.user_id}: {e}")
        return fresh_user
