"""Pull-based recovery of mentions missed by webhook delivery."""

import logging
from datetime import timedelta

from ..models import MentionAuthor, MentionEvent, PullResult
from ..orm.base import utcnow
from ..threads_client import ThreadsClient, ThreadsReply
from .admission_service import AdmissionGate
from .credential_service import CredentialService
from .interfaces import AccountRepository
from .mention_service import MentionService

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Scans replies to the account's recent posts and admits unseen ones.

    Safe to run repeatedly: every reply goes through the same admission gate
    as webhook deliveries, so a second pass over the same window admits
    nothing new.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        admission: AdmissionGate,
        mention_service: MentionService,
        credentials: CredentialService,
        threads_client: ThreadsClient,
        lookback_hours: int = 24,
        post_limit: int = 25,
    ):
        self.account_repo = account_repo
        self.admission = admission
        self.mention_service = mention_service
        self.credentials = credentials
        self.threads_client = threads_client
        self.lookback_hours = lookback_hours
        self.post_limit = post_limit

    @staticmethod
    def _to_event(account_platform_id: str, reply: ThreadsReply, parent_id: str) -> MentionEvent:
        # The replies edge exposes the author's username only
        return MentionEvent(
            account_platform_id=account_platform_id,
            post_id=reply.id,
            author=MentionAuthor(platform_user_id=reply.username, username=reply.username),
            text=reply.text,
            timestamp=reply.timestamp,
            parent_id=reply.replied_to_id or parent_id,
        )

    async def pull_mentions(self, account_id: str) -> PullResult:
        """Run one reconciliation pass for an account.

        Raises:
            NotFoundError: Unknown account.
            CredentialError: No usable access token.
            ThreadsAPIError: The account's posts could not be listed.
        """
        account = await self.account_repo.get_by_id(account_id)
        access_token = await self.credentials.get_valid_access_token(account.id)

        since = utcnow() - timedelta(hours=self.lookback_hours)
        posts = await self.threads_client.list_own_posts(
            access_token, account.platform_user_id, limit=self.post_limit, since=since
        )

        result = PullResult()
        for post in posts:
            result.posts_checked += 1
            try:
                replies = await self.threads_client.list_replies(access_token, post.id)
            except Exception as e:
                logger.warning("Failed to get replies for post %s: %s", post.id, e)
                result.errors += 1
                continue

            for reply in replies:
                if reply.username == account.username:
                    result.skipped += 1
                    continue

                try:
                    if await self.admission.is_known(account.id, reply.id):
                        result.skipped += 1
                        continue

                    mention = await self.mention_service.process_mention(
                        account, self._to_event(account.platform_user_id, reply, post.id)
                    )
                except Exception as e:
                    logger.error("Failed to process pulled reply %s: %s", reply.id, e)
                    result.errors += 1
                    continue

                if mention is None:
                    result.skipped += 1
                else:
                    result.new_mentions += 1

        logger.info(
            "Pulled mentions for account %s: checked=%d new=%d skipped=%d errors=%d",
            account.id,
            result.posts_checked,
            result.new_mentions,
            result.skipped,
            result.errors,
        )
        return result
