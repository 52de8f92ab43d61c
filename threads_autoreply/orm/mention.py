"""Mention model and its status state machine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..errors import InvalidStateError
from ..models import MentionAnalysis, MentionAuthor, MentionStatus
from .base import SqlalchemyBase, utcnow

# Allowed status edges; failed -> processing is the explicit retry edge
TRANSITIONS: dict[MentionStatus, frozenset[MentionStatus]] = {
    MentionStatus.PENDING: frozenset({MentionStatus.PROCESSING, MentionStatus.SKIPPED}),
    MentionStatus.PROCESSING: frozenset(
        {MentionStatus.REPLIED, MentionStatus.SKIPPED, MentionStatus.FAILED}
    ),
    MentionStatus.FAILED: frozenset({MentionStatus.PROCESSING}),
    MentionStatus.REPLIED: frozenset(),
    MentionStatus.SKIPPED: frozenset(),
}


class Mention(SqlalchemyBase):
    """One inbound mention of an account, tracked through the reply pipeline."""

    __tablename__ = "mentions"
    __table_args__ = (
        UniqueConstraint("account_id", "threads_post_id", name="uq_mentions_account_post"),
        Index("idx_mentions_account_status", "account_id", "status"),
        Index("idx_mentions_account_processed_at", "account_id", "processed_at"),
        Index("idx_mentions_received_at", "received_at"),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    threads_post_id: Mapped[str] = mapped_column(String, nullable=False)
    threads_parent_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    author_platform_id: Mapped[str] = mapped_column(String, nullable=False)
    author_username: Mapped[str] = mapped_column(String, nullable=False)
    author_display_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    media_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    analysis: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[MentionStatus] = mapped_column(
        Enum(MentionStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=MentionStatus.PENDING,
    )
    skip_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def new(
        cls,
        account_id: str,
        threads_post_id: str,
        author: MentionAuthor,
        content: str,
        media_urls: Optional[list[str]] = None,
        threads_parent_id: Optional[str] = None,
    ) -> "Mention":
        mention = cls(
            account_id=account_id,
            threads_post_id=threads_post_id,
            threads_parent_id=threads_parent_id,
            author_platform_id=author.platform_user_id,
            author_username=author.username,
            author_display_name=author.display_name or author.username,
            content=content,
            media_urls=list(media_urls or []),
            analysis=None,
            status=MentionStatus.PENDING,
            skip_reason=None,
            reply_id=None,
            processed_at=None,
        )
        mention._init_base()
        mention.received_at = mention.created_at
        return mention

    @property
    def author(self) -> MentionAuthor:
        return MentionAuthor(
            platform_user_id=self.author_platform_id,
            username=self.author_username,
            display_name=self.author_display_name,
        )

    def get_analysis(self) -> Optional[MentionAnalysis]:
        if self.analysis is None:
            return None
        return MentionAnalysis.model_validate(self.analysis)

    def set_analysis(self, analysis: MentionAnalysis) -> None:
        self.analysis = analysis.model_dump(mode="json")
        self.updated_at = utcnow()

    def _transition(self, target: MentionStatus) -> None:
        current = MentionStatus(self.status)
        if target not in TRANSITIONS[current]:
            raise InvalidStateError(
                f"Mention {self.id} cannot move from {current.value} to {target.value}"
            )
        self.status = target
        self.updated_at = utcnow()

    def mark_processing(self) -> None:
        self._transition(MentionStatus.PROCESSING)
        # A retry starts over: clear the previous attempt's outcome
        self.skip_reason = None
        self.processed_at = None

    def mark_replied(self, reply_id: str) -> None:
        self._transition(MentionStatus.REPLIED)
        self.reply_id = reply_id
        self.processed_at = utcnow()

    def mark_skipped(self, reason: str) -> None:
        self._transition(MentionStatus.SKIPPED)
        self.skip_reason = reason
        self.processed_at = utcnow()

    def mark_failed(self, reason: str) -> None:
        self._transition(MentionStatus.FAILED)
        self.skip_reason = reason
        self.processed_at = utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "threads_post_id": self.threads_post_id,
            "threads_parent_id": self.threads_parent_id,
            "author": {
                "platform_user_id": self.author_platform_id,
                "username": self.author_username,
                "display_name": self.author_display_name,
            },
            "content": self.content,
            "media_urls": list(self.media_urls or []),
            "analysis": self.analysis,
            "status": MentionStatus(self.status).value,
            "skip_reason": self.skip_reason,
            "reply_id": self.reply_id,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Mention(id={self.id}, account_id={self.account_id}, "
            f"threads_post_id={self.threads_post_id}, status={self.status})>"
        )
