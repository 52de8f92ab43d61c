"""Service layer for the mention pipeline and its persistence."""

from .admission_service import AdmissionGate
from .credential_service import CredentialService
from .database import DatabaseService, init_db_service
from .mention_service import MentionService
from .policy_engine import PolicyDecision, PolicyEngine
from .reconciliation_service import ReconciliationService
from .reply_composer import ComposedReply, ReplyComposer
from .task_runner import BackgroundTaskRunner
from .webhook_handler import WebhookHandler

__all__ = [
    "AdmissionGate",
    "BackgroundTaskRunner",
    "ComposedReply",
    "CredentialService",
    "DatabaseService",
    "MentionService",
    "PolicyDecision",
    "PolicyEngine",
    "ReconciliationService",
    "ReplyComposer",
    "WebhookHandler",
    "init_db_service",
]
