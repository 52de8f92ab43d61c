"""Account model: a connected Threads business account and its reply policy."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, ensure_utc, utcnow


class Account(SqlalchemyBase):
    """Business account whose mentions are answered automatically."""

    __tablename__ = "accounts"
    __table_args__ = (
        Index("idx_accounts_platform_user_id", "platform_user_id", unique=True),
    )

    platform_user_id: Mapped[str] = mapped_column(String, nullable=False)
    username: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False, default="")

    # Fernet-encrypted long-lived access token
    access_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Reply policy
    auto_reply_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reply_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    max_replies_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    ignore_verified_accounts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ignore_keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    @classmethod
    def new(
        cls,
        platform_user_id: str,
        username: str,
        display_name: str = "",
        **policy,
    ) -> "Account":
        account = cls(
            platform_user_id=platform_user_id,
            username=username,
            display_name=display_name,
            access_token_encrypted=None,
            token_expires_at=None,
            auto_reply_enabled=policy.pop("auto_reply_enabled", True),
            reply_delay_seconds=policy.pop("reply_delay_seconds", 30),
            max_replies_per_hour=policy.pop("max_replies_per_hour", 50),
            ignore_verified_accounts=policy.pop("ignore_verified_accounts", False),
            ignore_keywords=list(policy.pop("ignore_keywords", [])),
        )
        if policy:
            raise TypeError(f"Unknown account settings: {', '.join(sorted(policy))}")
        account._init_base()
        return account

    def set_token(self, encrypted_token: str, expires_at: datetime) -> None:
        self.access_token_encrypted = encrypted_token
        self.token_expires_at = expires_at
        self.updated_at = utcnow()

    def is_token_expired(self, margin_seconds: int = 0) -> bool:
        expires_at = ensure_utc(self.token_expires_at)
        if expires_at is None:
            return False
        return (expires_at - utcnow()).total_seconds() <= margin_seconds

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, username={self.username})>"
