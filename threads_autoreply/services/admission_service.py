"""Dedup gate that durably records new mentions."""

import logging
from typing import Optional

from ..errors import DuplicateEntryError
from ..models import MentionEvent
from ..orm import Account, Mention
from .interfaces import MentionRepository

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Admits each (account, post id) pair at most once.

    Webhooks are delivered at least once and the reconciliation pull can see
    the same reply again, so an already-known post is a silent no-op rather
    than an error.
    """

    def __init__(self, mention_repo: MentionRepository):
        self.mention_repo = mention_repo

    async def is_known(self, account_id: str, post_id: str) -> bool:
        return await self.mention_repo.get_by_post_id(account_id, post_id) is not None

    async def admit(self, account: Account, event: MentionEvent) -> Optional[Mention]:
        """Create a pending mention for the event.

        Returns:
            The new mention, or None if this post was already admitted.
        """
        if await self.is_known(account.id, event.post_id):
            logger.info("Mention already exists, skipping: threads_post_id=%s", event.post_id)
            return None

        mention = Mention.new(
            account_id=account.id,
            threads_post_id=event.post_id,
            author=event.author,
            content=event.text,
            media_urls=event.media_urls,
            threads_parent_id=event.parent_id,
        )
        try:
            await self.mention_repo.create(mention)
        except DuplicateEntryError:
            # Lost a race with a concurrent delivery of the same post
            logger.info("Mention admitted concurrently, skipping: threads_post_id=%s", event.post_id)
            return None

        logger.info(
            "Admitted mention %s from @%s (threads_post_id=%s)",
            mention.id,
            event.author.username,
            event.post_id,
        )
        return mention
