"""Mention lifecycle: admission, policy, and the asynchronous reply continuation."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import ForbiddenError, InvalidStateError
from ..llm_handler import LLMHandler
from ..models import (
    REASON_DETECTED_AS_SPAM,
    REASON_POST_FAILED,
    REASON_TOKEN_ERROR,
    MentionEvent,
    MentionStatus,
    MentionType,
    ReplyStatus,
)
from ..orm import Account, Mention, Reply
from ..threads_client import ThreadsClient
from .admission_service import AdmissionGate
from .credential_service import CredentialService
from .interfaces import AccountRepository, MentionRepository, ReplyRepository
from .policy_engine import PolicyEngine
from .reply_composer import ReplyComposer
from .task_runner import BackgroundTaskRunner

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


class MentionService:
    """Drives each mention from admission to a terminal status.

    ``process_mention`` runs synchronously for the caller (admission and
    policy) and hands the rest to the background runner. The continuation
    persists every transition before moving on, so a crash leaves the row in
    its last saved state.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        mention_repo: MentionRepository,
        reply_repo: ReplyRepository,
        admission: AdmissionGate,
        policy: PolicyEngine,
        llm: LLMHandler,
        composer: ReplyComposer,
        credentials: CredentialService,
        threads_client: ThreadsClient,
        task_runner: BackgroundTaskRunner,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.account_repo = account_repo
        self.mention_repo = mention_repo
        self.reply_repo = reply_repo
        self.admission = admission
        self.policy = policy
        self.llm = llm
        self.composer = composer
        self.credentials = credentials
        self.threads_client = threads_client
        self.task_runner = task_runner
        self._sleep = sleep

    # -- admission ----------------------------------------------------------

    async def process_mention(self, account: Account, event: MentionEvent) -> Optional[Mention]:
        """Admit a mention and, if policy allows, schedule its continuation.

        Returns:
            The admitted mention (possibly already ``skipped``), or None when
            auto-reply is off or the post was seen before.
        """
        if not self.policy.auto_reply_enabled(account):
            logger.info("Auto-reply disabled for account %s, ignoring mention", account.id)
            return None

        mention = await self.admission.admit(account, event)
        if mention is None:
            return None

        if not await self._passes_policy(account, mention):
            return mention

        self.schedule(mention, account)
        return mention

    async def _passes_policy(self, account: Account, mention: Mention) -> bool:
        """Mark the mention skipped and return False if a policy check fails."""
        decision = await self.policy.evaluate(account, mention)
        if decision.proceed:
            return True
        logger.info("Skipping mention %s: %s", mention.id, decision.reason)
        mention.mark_skipped(decision.reason)
        await self.mention_repo.update(mention)
        return False

    def schedule(self, mention: Mention, account: Account) -> None:
        self.task_runner.submit(
            self.run_continuation, mention, account, name=f"mention-{mention.id}"
        )

    # -- continuation -------------------------------------------------------

    async def _save(self, repo, obj, what: str) -> bool:
        try:
            await repo.update(obj)
            return True
        except Exception as e:
            logger.error("Failed to persist %s %s: %s", what, obj.id, e, exc_info=True)
            return False

    async def _fail(self, mention: Mention, reason: str) -> None:
        mention.mark_failed(reason)
        await self._save(self.mention_repo, mention, "mention")

    async def run_continuation(self, mention: Mention, account: Account) -> None:
        """Classify, compose, and deliver a reply for one mention.

        Also the retry entry point: a failed mention is processed again from
        classification onward, not resumed from the step that failed.
        """
        previous = MentionStatus(mention.status)
        try:
            mention.mark_processing()
        except InvalidStateError as e:
            logger.warning("Not processing mention %s: %s", mention.id, e)
            return
        try:
            claimed = await self.mention_repo.claim_for_processing(mention, previous)
        except Exception as e:
            logger.error("Failed to persist mention %s: %s", mention.id, e, exc_info=True)
            return
        if not claimed:
            logger.warning("Mention %s is no longer %s, not processing", mention.id, previous.value)
            return

        # Classification
        try:
            analysis = await self.llm.analyze_mention(mention.content, mention.author_username)
        except Exception as e:
            logger.error("Failed to analyze mention %s: %s", mention.id, e)
            await self._fail(mention, f"AI analysis failed: {e}")
            return

        mention.set_analysis(analysis)
        # The in-memory analysis is used below even if this write fails
        await self._save(self.mention_repo, mention, "mention analysis")

        if analysis.mention_type == MentionType.SPAM:
            mention.mark_skipped(REASON_DETECTED_AS_SPAM)
            await self._save(self.mention_repo, mention, "mention")
            logger.info("Mention %s detected as spam", mention.id)
            return

        if account.reply_delay_seconds > 0:
            logger.debug(
                "Waiting %ds before replying to mention %s", account.reply_delay_seconds, mention.id
            )
            await self._sleep(account.reply_delay_seconds)

        # Composition
        try:
            composed = await self.composer.compose(mention, analysis)
        except Exception as e:
            logger.error("Failed to generate reply for mention %s: %s", mention.id, e)
            await self._fail(mention, f"reply generation failed: {e}")
            return

        reply = await self._prepare_reply(mention, account, composed.text, composed.template_id)
        if reply is None:
            return

        # Credentials
        try:
            access_token = await self.credentials.get_valid_access_token(account.id)
        except Exception as e:
            logger.error("Failed to get access token for account %s: %s", account.id, e)
            reply.mark_failed(f"token error: {e}")
            await self._save(self.reply_repo, reply, "reply")
            await self._fail(mention, REASON_TOKEN_ERROR)
            return

        # Delivery
        try:
            threads_reply_id, response = await self.threads_client.create_reply(
                access_token, account.platform_user_id, reply.content, mention.threads_post_id
            )
        except Exception as e:
            logger.error("Failed to post reply for mention %s: %s", mention.id, e)
            reply.mark_failed(f"Threads API error: {e}")
            await self._save(self.reply_repo, reply, "reply")
            await self._fail(mention, REASON_POST_FAILED)
            return

        reply.mark_sent(threads_reply_id, response)
        if not await self._save(self.reply_repo, reply, "reply"):
            # Posted but not recorded; leave the mention in processing
            return

        mention.mark_replied(reply.id)
        await self._save(self.mention_repo, mention, "mention")

        logger.info(
            "Successfully replied to mention %s (reply_id=%s, threads_reply_id=%s)",
            mention.id,
            reply.id,
            threads_reply_id,
        )

    async def _prepare_reply(
        self,
        mention: Mention,
        account: Account,
        content: str,
        template_id: Optional[str],
    ) -> Optional[Reply]:
        """Create the pending reply row, reusing an unsent one from an earlier attempt."""
        try:
            reply = await self.reply_repo.get_by_mention_id(mention.id)
            if reply is not None and reply.status != ReplyStatus.SENT:
                reply.reset(content, template_id)
                await self.reply_repo.update(reply)
                return reply
            if reply is not None:
                logger.error("Mention %s already has a sent reply %s", mention.id, reply.id)
                return None

            reply = Reply.new(account.id, mention.id, content, template_id)
            await self.reply_repo.create(reply)
            return reply
        except Exception as e:
            logger.error("Failed to create reply record for mention %s: %s", mention.id, e)
            return None

    # -- operator actions ---------------------------------------------------

    async def get_mention(self, account_id: str, mention_id: str) -> Mention:
        mention = await self.mention_repo.get_by_id(mention_id)
        if mention.account_id != account_id:
            raise ForbiddenError(f"Mention {mention_id} belongs to another account")
        return mention

    async def list_mentions(
        self,
        account_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        status: Optional[MentionStatus] = None,
    ) -> list[Mention]:
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            limit = DEFAULT_PAGE_SIZE
        offset = max(0, offset)
        if status is not None:
            return await self.mention_repo.list_by_account_and_status(
                account_id, status, limit, offset
            )
        return await self.mention_repo.list_by_account(account_id, limit, offset)

    async def retry_mention(self, account_id: str, mention_id: str) -> Mention:
        """Reprocess a failed mention from the top.

        Raises:
            NotFoundError: Unknown mention.
            ForbiddenError: Mention belongs to another account.
            InvalidStateError: Mention is not ``failed``.
        """
        mention = await self.get_mention(account_id, mention_id)
        if mention.status != MentionStatus.FAILED:
            raise InvalidStateError("can only retry failed mentions")

        account = await self.account_repo.get_by_id(account_id)
        logger.info("Retrying mention %s", mention.id)
        self.schedule(mention, account)
        return mention

    async def resume_pending(self, limit: int = 50) -> int:
        """Schedule continuations for mentions stranded in ``pending``.

        A mention is stranded when the process stopped between admission and
        the policy checks, so the checks run again here. Mentions of accounts
        with auto-reply turned off stay pending.
        """
        resumed = 0
        for mention in await self.mention_repo.list_pending(limit):
            try:
                account = await self.account_repo.get_by_id(mention.account_id)
                if not self.policy.auto_reply_enabled(account):
                    logger.info(
                        "Auto-reply disabled for account %s, leaving mention %s pending",
                        account.id,
                        mention.id,
                    )
                    continue
                if not await self._passes_policy(account, mention):
                    continue
            except Exception as e:
                logger.error("Cannot resume mention %s: %s", mention.id, e)
                continue
            self.schedule(mention, account)
            resumed += 1
        if resumed:
            logger.info("Resumed %d pending mention(s)", resumed)
        return resumed
