"""Per-account reply policy evaluated at admission time."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..models import REASON_MATCHED_SKIP_CRITERIA, REASON_RATE_LIMIT_EXCEEDED
from ..orm import Account, Mention
from .interfaces import MentionRepository

logger = logging.getLogger(__name__)


@dataclass
class PolicyDecision:
    """Outcome of the policy checks for one mention."""

    proceed: bool
    reason: Optional[str] = None


class PolicyEngine:
    """Decides whether an admitted mention continues to AI processing.

    The hourly limit is read once, here; concurrent admissions for the same
    account can both pass before either reply is recorded, so the limit is
    advisory.
    """

    def __init__(self, mention_repo: MentionRepository):
        self.mention_repo = mention_repo

    @staticmethod
    def auto_reply_enabled(account: Account) -> bool:
        return bool(account.auto_reply_enabled)

    @staticmethod
    def matches_ignore_keywords(account: Account, content: str) -> bool:
        content_lower = content.lower()
        return any(
            keyword and keyword.lower() in content_lower
            for keyword in account.ignore_keywords or []
        )

    async def is_rate_limited(self, account: Account) -> bool:
        try:
            replied = await self.mention_repo.count_replied_last_hour(account.id)
        except Exception as e:
            # Counting is best effort; a failed count does not block replies
            logger.error("Failed to count replies for account %s: %s", account.id, e)
            return False

        if replied >= account.max_replies_per_hour:
            logger.warning(
                "Rate limit reached for account %s (%d/%d in the last hour)",
                account.id,
                replied,
                account.max_replies_per_hour,
            )
            return True
        return False

    async def evaluate(self, account: Account, mention: Mention) -> PolicyDecision:
        """Run the keyword and rate-limit checks for an admitted mention."""
        if self.matches_ignore_keywords(account, mention.content):
            return PolicyDecision(proceed=False, reason=REASON_MATCHED_SKIP_CRITERIA)

        if await self.is_rate_limited(account):
            return PolicyDecision(proceed=False, reason=REASON_RATE_LIMIT_EXCEEDED)

        return PolicyDecision(proceed=True)
