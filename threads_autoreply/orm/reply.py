"""Reply model for outbound responses to mentions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..models import ReplyStatus
from .base import SqlalchemyBase, utcnow


class Reply(SqlalchemyBase):
    """The message posted (or attempted) in answer to exactly one mention."""

    __tablename__ = "replies"
    __table_args__ = (
        Index("idx_replies_mention_id", "mention_id", unique=True),
        Index("idx_replies_account_id", "account_id"),
        Index("idx_replies_created_at", "created_at"),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    mention_id: Mapped[str] = mapped_column(
        String, ForeignKey("mentions.id", ondelete="CASCADE"), nullable=False
    )
    template_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[ReplyStatus] = mapped_column(
        Enum(ReplyStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReplyStatus.PENDING,
    )
    threads_reply_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    threads_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def new(
        cls,
        account_id: str,
        mention_id: str,
        content: str,
        template_id: Optional[str] = None,
    ) -> "Reply":
        reply = cls(
            account_id=account_id,
            mention_id=mention_id,
            template_id=template_id,
            content=content,
            status=ReplyStatus.PENDING,
            threads_reply_id=None,
            threads_response=None,
            error=None,
            sent_at=None,
        )
        reply._init_base()
        return reply

    def reset(self, content: str, template_id: Optional[str]) -> None:
        """Reuse an unsent reply row for a new delivery attempt."""
        self.content = content
        self.template_id = template_id
        self.status = ReplyStatus.PENDING
        self.error = None
        self.updated_at = utcnow()

    def mark_sent(self, threads_reply_id: str, response: Optional[dict] = None) -> None:
        self.status = ReplyStatus.SENT
        self.threads_reply_id = threads_reply_id
        self.threads_response = response
        self.error = None
        self.sent_at = utcnow()
        self.updated_at = self.sent_at

    def mark_failed(self, error: str) -> None:
        self.status = ReplyStatus.FAILED
        self.error = error
        self.updated_at = utcnow()

    def __repr__(self) -> str:
        return (
            f"<Reply(id={self.id}, mention_id={self.mention_id}, status={self.status}, "
            f"threads_reply_id={self.threads_reply_id})>"
        )
