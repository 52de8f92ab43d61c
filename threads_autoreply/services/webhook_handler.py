"""Threads webhook event handler."""

import logging
from typing import Any

from ..errors import AutoReplyError, NotFoundError
from ..orm import Account
from ..threads_webhook import extract_mentions
from .interfaces import AccountRepository
from .mention_service import MentionService

logger = logging.getLogger(__name__)


class WebhookHandler:
    """Routes mention changes from a verified webhook payload into the pipeline."""

    def __init__(self, account_repo: AccountRepository, mention_service: MentionService):
        self.account_repo = account_repo
        self.mention_service = mention_service

    async def handle_payload(self, payload: dict[str, Any]) -> int:
        """Admit every mention in the payload.

        Unknown accounts are ignored. A mention that cannot be admitted does
        not stop the rest of the batch, but the call raises afterwards so the
        provider redelivers; already admitted mentions are deduplicated then.

        Returns:
            Number of newly admitted mentions.

        Raises:
            AutoReplyError: If admission failed for at least one mention.
        """
        events = extract_mentions(payload)
        if not events:
            logger.info("Webhook payload contained no mentions")
            return 0

        accounts: dict[str, Account | None] = {}
        admitted = 0
        failures = 0

        for event in events:
            if event.account_platform_id not in accounts:
                try:
                    accounts[event.account_platform_id] = (
                        await self.account_repo.get_by_platform_user_id(event.account_platform_id)
                    )
                except NotFoundError:
                    logger.warning(
                        "Ignoring mention for unknown account %s", event.account_platform_id
                    )
                    accounts[event.account_platform_id] = None

            account = accounts[event.account_platform_id]
            if account is None:
                continue

            try:
                mention = await self.mention_service.process_mention(account, event)
            except Exception as e:
                logger.error(
                    "Failed to admit mention threads_post_id=%s: %s", event.post_id, e, exc_info=True
                )
                failures += 1
                continue

            if mention is not None:
                admitted += 1

        logger.info("Webhook processed: %d mention(s), %d admitted", len(events), admitted)
        if failures:
            raise AutoReplyError(f"Failed to admit {failures} of {len(events)} mention(s)")
        return admitted
