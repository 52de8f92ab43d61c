"""Resolves usable Threads access tokens for accounts."""

import logging
from datetime import timedelta

from cryptography.fernet import Fernet, InvalidToken

from ..errors import CredentialError, NotFoundError, ThreadsAPIError
from ..orm import Account
from ..orm.base import utcnow
from ..threads_client import ThreadsClient
from .interfaces import AccountRepository

logger = logging.getLogger(__name__)


class CredentialService:
    """Decrypts stored access tokens and refreshes them when they expire."""

    def __init__(
        self,
        account_repo: AccountRepository,
        threads_client: ThreadsClient,
        encryption_key: str,
        refresh_margin_seconds: int = 0,
    ):
        self.account_repo = account_repo
        self.threads_client = threads_client
        self.refresh_margin_seconds = refresh_margin_seconds
        try:
            self._fernet = Fernet(encryption_key.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise CredentialError(f"Invalid encryption key: {e}") from e

    def encrypt_token(self, token: str) -> str:
        if not token:
            raise CredentialError("Token must be a non-empty string")
        return self._fernet.encrypt(token.encode("utf-8")).decode("utf-8")

    def decrypt_token(self, encrypted_token: str) -> str:
        try:
            return self._fernet.decrypt(encrypted_token.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialError("Stored access token could not be decrypted") from e

    async def store_token(self, account: Account, token: str, expires_in: int) -> Account:
        """Encrypt and persist a token for an account."""
        account.set_token(self.encrypt_token(token), utcnow() + timedelta(seconds=expires_in))
        return await self.account_repo.update(account)

    async def get_valid_access_token(self, account_id: str) -> str:
        """Return a decrypted, non-expired access token.

        Raises:
            CredentialError: If the account has no token, decryption fails, or
                an expired token cannot be refreshed.
        """
        try:
            account = await self.account_repo.get_by_id(account_id)
        except NotFoundError as e:
            raise CredentialError(f"Account {account_id} not found") from e

        if not account.access_token_encrypted:
            raise CredentialError(f"Account {account_id} has no access token")

        token = self.decrypt_token(account.access_token_encrypted)
        if not account.is_token_expired(self.refresh_margin_seconds):
            return token

        logger.info("Access token for account %s expired, refreshing", account_id)
        try:
            refreshed = await self.threads_client.refresh_token(token)
        except ThreadsAPIError as e:
            raise CredentialError(f"token expired and refresh failed: {e}") from e

        try:
            await self.store_token(account, refreshed.access_token, refreshed.expires_in)
        except NotFoundError as e:
            raise CredentialError(f"Failed to store refreshed token: {e}") from e
        return refreshed.access_token
