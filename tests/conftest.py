"""Shared fixtures: in-memory repositories and stub collaborators."""

import hashlib
import hmac
import json
from datetime import timedelta
from typing import Optional

import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from threads_autoreply.config import Config, LLMConfig, SecurityConfig, ThreadsConfig
from threads_autoreply.errors import DuplicateEntryError, NotFoundError
from threads_autoreply.models import (
    MentionAnalysis,
    MentionAuthor,
    MentionEvent,
    MentionStatus,
    MentionType,
)
from threads_autoreply.orm import Account, Mention, Reply, Template
from threads_autoreply.orm.base import utcnow
from threads_autoreply.services.admission_service import AdmissionGate
from threads_autoreply.services.mention_service import MentionService
from threads_autoreply.services.policy_engine import PolicyEngine
from threads_autoreply.services.reply_composer import ReplyComposer
from threads_autoreply.services.task_runner import BackgroundTaskRunner
from threads_autoreply.threads_client import ThreadsPost, ThreadsReply

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "test-verify-token"


class _InMemoryRepository:
    """Dict-backed store with the create/get/update contract of the SQL repositories."""

    def __init__(self):
        self.rows: dict = {}
        self.fail_create: Optional[Exception] = None
        self.fail_update: Optional[Exception] = None
        self.update_calls = 0

    async def create(self, obj):
        if self.fail_create is not None:
            raise self.fail_create
        if obj.id in self.rows:
            raise DuplicateEntryError(f"{obj.id} already exists")
        self.rows[obj.id] = obj
        return obj

    async def get_by_id(self, obj_id: str):
        obj = self.rows.get(obj_id)
        if obj is None or obj.is_deleted:
            raise NotFoundError(f"{obj_id} not found")
        return obj

    async def update(self, obj):
        self.update_calls += 1
        if self.fail_update is not None:
            raise self.fail_update
        if obj.id not in self.rows:
            raise NotFoundError(f"{obj.id} not found")
        self.rows[obj.id] = obj
        return obj

    def all(self) -> list:
        return [obj for obj in self.rows.values() if not obj.is_deleted]


class InMemoryAccountRepository(_InMemoryRepository):
    async def get_by_platform_user_id(self, platform_user_id: str) -> Account:
        for account in self.all():
            if account.platform_user_id == platform_user_id:
                return account
        raise NotFoundError(f"No account for platform user {platform_user_id}")


class InMemoryMentionRepository(_InMemoryRepository):
    def __init__(self):
        super().__init__()
        # Status as last written, since callers share and mutate the stored objects
        self.persisted_status: dict[str, MentionStatus] = {}

    async def create(self, mention: Mention) -> Mention:
        if any(
            m.account_id == mention.account_id and m.threads_post_id == mention.threads_post_id
            for m in self.all()
        ):
            raise DuplicateEntryError("mentions row violates a unique constraint")
        await super().create(mention)
        self.persisted_status[mention.id] = mention.status
        return mention

    async def update(self, mention: Mention) -> Mention:
        await super().update(mention)
        self.persisted_status[mention.id] = mention.status
        return mention

    async def claim_for_processing(self, mention: Mention, expected: MentionStatus) -> bool:
        self.update_calls += 1
        if self.fail_update is not None:
            raise self.fail_update
        if self.persisted_status.get(mention.id) != expected:
            return False
        self.rows[mention.id] = mention
        self.persisted_status[mention.id] = MentionStatus.PROCESSING
        return True

    async def get_by_post_id(self, account_id: str, threads_post_id: str) -> Optional[Mention]:
        for mention in self.all():
            if mention.account_id == account_id and mention.threads_post_id == threads_post_id:
                return mention
        return None

    async def list_by_account(self, account_id: str, limit: int = 20, offset: int = 0):
        mentions = sorted(
            (m for m in self.all() if m.account_id == account_id),
            key=lambda m: m.created_at,
            reverse=True,
        )
        return mentions[offset : offset + limit]

    async def list_by_account_and_status(
        self, account_id: str, status: MentionStatus, limit: int = 20, offset: int = 0
    ):
        mentions = await self.list_by_account(account_id, limit=len(self.rows) or 1)
        return [m for m in mentions if m.status == status][offset : offset + limit]

    async def list_pending(self, limit: int = 50):
        pending = sorted(
            (m for m in self.all() if m.status == MentionStatus.PENDING),
            key=lambda m: m.received_at,
        )
        return pending[:limit]

    async def count_replied_last_hour(self, account_id: str) -> int:
        cutoff = utcnow() - timedelta(hours=1)
        return sum(
            1
            for m in self.all()
            if m.account_id == account_id
            and m.status == MentionStatus.REPLIED
            and m.processed_at is not None
            and m.processed_at >= cutoff
        )


class InMemoryReplyRepository(_InMemoryRepository):
    async def create(self, reply: Reply) -> Reply:
        if any(r.mention_id == reply.mention_id for r in self.all()):
            raise DuplicateEntryError("replies row violates a unique constraint")
        return await super().create(reply)

    async def get_by_mention_id(self, mention_id: str) -> Optional[Reply]:
        for reply in self.all():
            if reply.mention_id == mention_id:
                return reply
        return None

    async def list_by_account(self, account_id: str, limit: int = 20, offset: int = 0):
        replies = [r for r in self.all() if r.account_id == account_id]
        return replies[offset : offset + limit]


class InMemoryTemplateRepository(_InMemoryRepository):
    async def list_by_account(self, account_id: str):
        templates = [t for t in self.all() if t.account_id == account_id]
        templates.sort(key=lambda t: t.created_at, reverse=True)
        templates.sort(key=lambda t: t.priority)
        return templates

    async def list_active_by_type(self, account_id: str, mention_type: MentionType):
        return [
            t
            for t in await self.list_by_account(account_id)
            if t.is_active and t.mention_type == mention_type
        ]


class StubLLM:
    """Stands in for LLMHandler; returns canned analyses and replies."""

    def __init__(self):
        self.analysis = MentionAnalysis(
            mention_type=MentionType.QUESTION,
            sentiment=0.1,
            intent="asking_question",
            keywords=["app"],
            suggested_tone="helpful",
            raw_analysis='{"mention_type": "question"}',
        )
        self.reply_text = "Thanks for reaching out! We're on it."
        self.analyze_error: Optional[Exception] = None
        self.generate_error: Optional[Exception] = None
        self.analyze_calls: list[tuple[str, str]] = []
        self.generate_calls: list[dict] = []

    async def analyze_mention(self, mention_text: str, author_handle: str) -> MentionAnalysis:
        self.analyze_calls.append((mention_text, author_handle))
        if self.analyze_error is not None:
            raise self.analyze_error
        return self.analysis

    async def generate_reply(self, mention_text, author_handle, analysis, template_hint=""):
        self.generate_calls.append(
            {"text": mention_text, "handle": author_handle, "template_hint": template_hint}
        )
        if self.generate_error is not None:
            raise self.generate_error
        return self.reply_text


class StubThreadsClient:
    """Records calls made against the Threads API."""

    def __init__(self):
        self.reply_id = "R123"
        self.create_error: Optional[Exception] = None
        self.posts: list[ThreadsPost] = []
        self.replies: dict[str, list[ThreadsReply]] = {}
        self.replies_errors: dict[str, Exception] = {}
        self.created: list[dict] = []
        self.closed = False

    async def create_reply(self, access_token, account_platform_id, text, reply_to_id):
        self.created.append(
            {
                "access_token": access_token,
                "account_platform_id": account_platform_id,
                "text": text,
                "reply_to_id": reply_to_id,
            }
        )
        if self.create_error is not None:
            raise self.create_error
        return self.reply_id, {"id": self.reply_id}

    async def list_own_posts(self, access_token, account_platform_id, limit=25, since=None):
        return list(self.posts)[:limit]

    async def list_replies(self, access_token, post_id):
        if post_id in self.replies_errors:
            raise self.replies_errors[post_id]
        return list(self.replies.get(post_id, []))

    async def close(self):
        self.closed = True


class StubCredentials:
    def __init__(self, token: str = "access-token"):
        self.token = token
        self.error: Optional[Exception] = None

    async def get_valid_access_token(self, account_id: str) -> str:
        if self.error is not None:
            raise self.error
        return self.token


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_event(
    post_id: str = "post-1",
    text: str = "Hey @acme, how do I export my data?",
    username: str = "alice",
    account_platform_id: str = "biz-1",
) -> MentionEvent:
    return MentionEvent(
        account_platform_id=account_platform_id,
        post_id=post_id,
        author=MentionAuthor(platform_user_id=f"uid-{username}", username=username),
        text=text,
    )


def make_analysis(
    mention_type: MentionType = MentionType.COMPLAINT,
    sentiment: float = -0.6,
    raw_analysis: str = "",
) -> MentionAnalysis:
    return MentionAnalysis(
        mention_type=mention_type,
        sentiment=sentiment,
        intent="seeking_resolution",
        keywords=["broken"],
        suggested_tone="apologetic",
        raw_analysis=raw_analysis,
    )


def make_replied_mention(account: Account, post_id: str) -> Mention:
    mention = Mention.new(
        account_id=account.id,
        threads_post_id=post_id,
        author=MentionAuthor(platform_user_id="uid-bob", username="bob"),
        content="earlier mention",
    )
    mention.mark_processing()
    mention.mark_replied(reply_id=f"reply-{post_id}")
    return mention


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def webhook_body(*changes: dict, account_platform_id: str = "biz-1") -> bytes:
    payload = {
        "object": "threads",
        "entry": [{"id": account_platform_id, "time": 1714560000, "changes": list(changes)}],
    }
    return json.dumps(payload).encode("utf-8")


def mention_change(post_id: str, text: str, username: str = "alice") -> dict:
    return {
        "field": "mentions",
        "value": {
            "media_id": post_id,
            "text": text,
            "timestamp": "2024-05-01T12:00:00+0000",
            "from": {"id": f"uid-{username}", "username": username},
        },
    }


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode("utf-8")


@pytest.fixture
def config(fernet_key, tmp_path) -> Config:
    return Config(
        threads=ThreadsConfig(
            app_id="app-1",
            app_secret=SecretStr(APP_SECRET),
            webhook_verify_token=SecretStr(VERIFY_TOKEN),
        ),
        llm=LLMConfig(api_key=SecretStr("sk-test")),
        security=SecurityConfig(encryption_key=SecretStr(fernet_key)),
        pipeline={"database_path": str(tmp_path / "test.db")},
    )


@pytest.fixture
def account_repo() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def mention_repo() -> InMemoryMentionRepository:
    return InMemoryMentionRepository()


@pytest.fixture
def reply_repo() -> InMemoryReplyRepository:
    return InMemoryReplyRepository()


@pytest.fixture
def template_repo() -> InMemoryTemplateRepository:
    return InMemoryTemplateRepository()


@pytest.fixture
def account(account_repo) -> Account:
    account = Account.new(
        platform_user_id="biz-1",
        username="acme",
        display_name="Acme Support",
        reply_delay_seconds=0,
        max_replies_per_hour=50,
    )
    account_repo.rows[account.id] = account
    return account


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def threads_client() -> StubThreadsClient:
    return StubThreadsClient()


@pytest.fixture
def credentials() -> StubCredentials:
    return StubCredentials()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def task_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner(max_concurrent=4)


@pytest.fixture
def mention_service(
    account_repo,
    mention_repo,
    reply_repo,
    template_repo,
    llm,
    threads_client,
    credentials,
    task_runner,
    sleep,
) -> MentionService:
    return MentionService(
        account_repo=account_repo,
        mention_repo=mention_repo,
        reply_repo=reply_repo,
        admission=AdmissionGate(mention_repo),
        policy=PolicyEngine(mention_repo),
        llm=llm,
        composer=ReplyComposer(template_repo, llm),
        credentials=credentials,
        threads_client=threads_client,
        task_runner=task_runner,
        sleep=sleep,
    )


def add_template(
    template_repo: InMemoryTemplateRepository, template: Template
) -> Template:
    template_repo.rows[template.id] = template
    return template
