"""Tests for the SQLAlchemy repositories against a temporary SQLite file."""

from datetime import timedelta

import pytest

from threads_autoreply.errors import DuplicateEntryError, NotFoundError
from threads_autoreply.models import (
    MentionAuthor,
    MentionStatus,
    MentionType,
    ReplyStatus,
    TemplateConditions,
)
from threads_autoreply.orm import Account, Mention, Reply, Template
from threads_autoreply.orm.base import utcnow
from threads_autoreply.services.database import init_db_service
from threads_autoreply.services.repositories import (
    SqlAccountRepository,
    SqlMentionRepository,
    SqlReplyRepository,
    SqlTemplateRepository,
)

AUTHOR = MentionAuthor(platform_user_id="uid-alice", username="alice", display_name="Alice")


def _mention(account: Account, post_id: str, content: str = "hello") -> Mention:
    return Mention.new(account_id=account.id, threads_post_id=post_id, author=AUTHOR, content=content)


class TestSqlRepositories:
    """Round trips through the SQLite schema."""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "autoreply.db"

    async def _setup(self, db_path):
        db = await init_db_service(db_path)
        repos = (
            SqlAccountRepository(db),
            SqlMentionRepository(db),
            SqlReplyRepository(db),
            SqlTemplateRepository(db),
        )
        account = await repos[0].create(
            Account.new(platform_user_id="biz-1", username="acme", ignore_keywords=["promo"])
        )
        return db, repos, account

    @pytest.mark.asyncio
    async def test_account_lookup(self, db_path):
        db, (accounts, *_), account = await self._setup(db_path)
        try:
            found = await accounts.get_by_platform_user_id("biz-1")

            assert found.id == account.id
            assert found.ignore_keywords == ["promo"]
            assert found.reply_delay_seconds == 30
            with pytest.raises(NotFoundError):
                await accounts.get_by_platform_user_id("biz-404")
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_duplicate_post_id_rejected(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            await mentions.create(_mention(account, "p1"))

            with pytest.raises(DuplicateEntryError):
                await mentions.create(_mention(account, "p1"))

            assert len(await mentions.list_by_account(account.id)) == 1
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_mention_update_round_trip(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            mention = await mentions.create(_mention(account, "p1"))
            found = await mentions.get_by_post_id(account.id, "p1")
            assert found.id == mention.id
            assert await mentions.get_by_post_id(account.id, "p2") is None

            mention.mark_processing()
            mention.mark_skipped("detected as spam")
            await mentions.update(mention)

            stored = await mentions.get_by_id(mention.id)
            assert stored.status == MentionStatus.SKIPPED
            assert stored.skip_reason == "detected as spam"
            assert stored.author.username == "alice"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_claim_for_processing_is_conditional(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            mention = await mentions.create(_mention(account, "p1"))
            # Two workers holding the same pending row
            first = await mentions.get_by_id(mention.id)
            second = await mentions.get_by_id(mention.id)

            first.mark_processing()
            second.mark_processing()

            assert await mentions.claim_for_processing(first, MentionStatus.PENDING) is True
            assert await mentions.claim_for_processing(second, MentionStatus.PENDING) is False
            stored = await mentions.get_by_id(mention.id)
            assert stored.status == MentionStatus.PROCESSING
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_claim_failed_mention_for_retry(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            mention = await mentions.create(_mention(account, "p1"))
            mention.mark_processing()
            mention.mark_failed("failed to post reply")
            await mentions.update(mention)

            mention.mark_processing()

            assert await mentions.claim_for_processing(mention, MentionStatus.FAILED) is True
            stored = await mentions.get_by_id(mention.id)
            assert stored.status == MentionStatus.PROCESSING
            assert stored.skip_reason is None
            assert stored.processed_at is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_update_missing_row(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            with pytest.raises(NotFoundError):
                await mentions.update(_mention(account, "never-created"))
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_count_replied_last_hour(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            for post_id, age in (("recent-1", 5), ("recent-2", 30), ("old", 90)):
                mention = await mentions.create(_mention(account, post_id))
                mention.mark_processing()
                mention.mark_replied(reply_id=f"reply-{post_id}")
                mention.processed_at = utcnow() - timedelta(minutes=age)
                await mentions.update(mention)
            await mentions.create(_mention(account, "pending"))

            assert await mentions.count_replied_last_hour(account.id) == 2
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_list_pending_oldest_first(self, db_path):
        db, (_, mentions, *_), account = await self._setup(db_path)
        try:
            newer = _mention(account, "newer")
            older = _mention(account, "older")
            older.received_at = newer.received_at - timedelta(minutes=5)
            await mentions.create(newer)
            await mentions.create(older)

            pending = await mentions.list_pending()

            assert [m.threads_post_id for m in pending] == ["older", "newer"]
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_reply_by_mention(self, db_path):
        db, (_, mentions, replies, _), account = await self._setup(db_path)
        try:
            mention = await mentions.create(_mention(account, "p1"))
            reply = await replies.create(Reply.new(account.id, mention.id, "Thanks!"))

            reply.mark_sent("R123", {"id": "R123"})
            await replies.update(reply)

            stored = await replies.get_by_mention_id(mention.id)
            assert stored.status == ReplyStatus.SENT
            assert stored.threads_reply_id == "R123"
            assert stored.threads_response == {"id": "R123"}

            with pytest.raises(DuplicateEntryError):
                await replies.create(Reply.new(account.id, mention.id, "Again"))
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_active_templates_by_priority(self, db_path):
        db, (*_, templates), account = await self._setup(db_path)
        try:
            low = Template.new(account.id, "low", MentionType.COMPLAINT, "Low", priority=5)
            high = Template.new(
                account.id,
                "high",
                MentionType.COMPLAINT,
                "Sorry {{ username }}",
                priority=1,
                conditions=TemplateConditions(sentiment_threshold=0.0),
            )
            inactive = Template.new(
                account.id, "off", MentionType.COMPLAINT, "Off", priority=0, is_active=False
            )
            other_type = Template.new(account.id, "q", MentionType.QUESTION, "Q", priority=0)
            for template in (low, high, inactive, other_type):
                await templates.create(template)

            active = await templates.list_active_by_type(account.id, MentionType.COMPLAINT)

            assert [t.name for t in active] == ["high", "low"]
            assert active[0].variables == ["username"]
            assert active[0].get_conditions().sentiment_threshold == 0.0
            assert len(await templates.list_by_account(account.id)) == 4
        finally:
            await db.close()
