"""Value types shared across the mention pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MentionType(str, Enum):
    """Classification assigned to a mention by the AI collaborator."""

    COMPLAINT = "complaint"
    POSITIVE = "positive"
    QUESTION = "question"
    NEUTRAL = "neutral"
    SPAM = "spam"


class MentionStatus(str, Enum):
    """Pipeline stage of a mention."""

    PENDING = "pending"
    PROCESSING = "processing"
    REPLIED = "replied"
    SKIPPED = "skipped"
    FAILED = "failed"


class ReplyStatus(str, Enum):
    """Delivery state of an outbound reply."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# Skip/failure reasons written to Mention.skip_reason
REASON_MATCHED_SKIP_CRITERIA = "matched skip criteria"
REASON_RATE_LIMIT_EXCEEDED = "rate limit exceeded"
REASON_DETECTED_AS_SPAM = "detected as spam"
REASON_TOKEN_ERROR = "token error"
REASON_POST_FAILED = "failed to post reply"


class MentionAnalysis(BaseModel):
    """Structured classification of a mention."""

    mention_type: MentionType
    sentiment: float
    intent: str = ""
    urgency: str = "medium"
    keywords: list[str] = Field(default_factory=list)
    suggested_tone: str = ""
    raw_analysis: str = ""

    @field_validator("mention_type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("sentiment")
    @classmethod
    def _clamp_sentiment(cls, value: float) -> float:
        return max(-1.0, min(1.0, value))


class TemplateConditions(BaseModel):
    """Optional match conditions attached to a reply template."""

    keywords: list[str] = Field(default_factory=list)
    sentiment_threshold: Optional[float] = None

    def matches(self, analysis: MentionAnalysis) -> bool:
        """Return True if the analysis satisfies every configured condition."""
        if self.sentiment_threshold is not None:
            if analysis.sentiment > self.sentiment_threshold:
                return False

        if self.keywords:
            haystack = analysis.raw_analysis.lower()
            if not any(keyword.lower() in haystack for keyword in self.keywords):
                return False

        return True


@dataclass
class MentionAuthor:
    """Author of an inbound mention."""

    platform_user_id: str
    username: str
    display_name: str = ""


@dataclass
class MentionEvent:
    """A mention normalized from a webhook change or a pulled reply."""

    account_platform_id: str
    post_id: str
    author: MentionAuthor
    text: str
    timestamp: Optional[datetime] = None
    media_urls: list[str] = field(default_factory=list)
    parent_id: Optional[str] = None


@dataclass
class PullResult:
    """Counters returned by one reconciliation pass."""

    posts_checked: int = 0
    new_mentions: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "posts_checked": self.posts_checked,
            "new_mentions": self.new_mentions,
            "skipped": self.skipped,
            "errors": self.errors,
        }
