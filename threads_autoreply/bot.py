"""Wires the mention pipeline together from configuration."""

import logging
from typing import Optional

import httpx

from .config import Config
from .llm_handler import LLMHandler
from .services.admission_service import AdmissionGate
from .services.credential_service import CredentialService
from .services.database import DatabaseService
from .services.interfaces import (
    AccountRepository,
    MentionRepository,
    ReplyRepository,
    TemplateRepository,
)
from .services.mention_service import MentionService
from .services.policy_engine import PolicyEngine
from .services.reconciliation_service import ReconciliationService
from .services.reply_composer import ReplyComposer
from .services.repositories import (
    SqlAccountRepository,
    SqlMentionRepository,
    SqlReplyRepository,
    SqlTemplateRepository,
)
from .services.task_runner import BackgroundTaskRunner
from .services.webhook_handler import WebhookHandler
from .threads_client import ThreadsClient
from .threads_webhook import WebhookVerifier

logger = logging.getLogger(__name__)


class AutoReplyBot:
    """Owns every pipeline component for one process.

    Repositories are passed in so the same wiring runs against SQLite in
    production and in-memory fakes in tests.
    """

    def __init__(
        self,
        config: Config,
        account_repo: AccountRepository,
        mention_repo: MentionRepository,
        reply_repo: ReplyRepository,
        template_repo: TemplateRepository,
        llm: Optional[LLMHandler] = None,
        threads_client: Optional[ThreadsClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        db_service: Optional[DatabaseService] = None,
    ) -> None:
        self.config = config
        self.db_service = db_service

        self.account_repo = account_repo
        self.mention_repo = mention_repo
        self.reply_repo = reply_repo
        self.template_repo = template_repo

        self.verifier = WebhookVerifier(
            app_secret=config.threads.app_secret.get_secret_value(),
            verify_token=config.threads.webhook_verify_token.get_secret_value(),
        )
        self.threads_client = threads_client or ThreadsClient(config.threads, http_client)
        self.llm = llm or LLMHandler(config.llm)
        self.credentials = CredentialService(
            account_repo,
            self.threads_client,
            config.security.encryption_key.get_secret_value(),
            refresh_margin_seconds=config.pipeline.token_refresh_margin_seconds,
        )

        self.task_runner = BackgroundTaskRunner(config.pipeline.max_concurrent_tasks)
        self.admission = AdmissionGate(mention_repo)
        self.policy = PolicyEngine(mention_repo)
        self.composer = ReplyComposer(template_repo, self.llm)
        self.mention_service = MentionService(
            account_repo=account_repo,
            mention_repo=mention_repo,
            reply_repo=reply_repo,
            admission=self.admission,
            policy=self.policy,
            llm=self.llm,
            composer=self.composer,
            credentials=self.credentials,
            threads_client=self.threads_client,
            task_runner=self.task_runner,
        )
        self.reconciliation = ReconciliationService(
            account_repo=account_repo,
            admission=self.admission,
            mention_service=self.mention_service,
            credentials=self.credentials,
            threads_client=self.threads_client,
            lookback_hours=config.pipeline.pull_lookback_hours,
            post_limit=config.pipeline.pull_post_limit,
        )
        self.webhook_handler = WebhookHandler(account_repo, self.mention_service)

    @classmethod
    def from_database(cls, config: Config, db_service: DatabaseService, **kwargs) -> "AutoReplyBot":
        """Build a bot backed by the SQLAlchemy repositories."""
        return cls(
            config,
            account_repo=SqlAccountRepository(db_service),
            mention_repo=SqlMentionRepository(db_service),
            reply_repo=SqlReplyRepository(db_service),
            template_repo=SqlTemplateRepository(db_service),
            db_service=db_service,
            **kwargs,
        )

    async def close(self) -> None:
        """Wait for in-flight continuations, then release clients and the database."""
        if self.task_runner.pending:
            logger.info("Waiting for %d background task(s) to finish", self.task_runner.pending)
        await self.task_runner.drain()
        await self.threads_client.close()
        if self.db_service is not None:
            await self.db_service.close()
            logger.info("Database connection closed")
