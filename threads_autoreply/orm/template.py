"""Template model for reusable reply patterns."""

from typing import Optional

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..models import MentionAnalysis, MentionType, TemplateConditions
from ..templating import TemplateVariables, extract_variables, render_template
from .base import SqlalchemyBase


class Template(SqlalchemyBase):
    """Account-owned reply pattern for one mention type."""

    __tablename__ = "templates"
    __table_args__ = (
        Index("idx_templates_account_type_active", "account_id", "mention_type", "is_active"),
        Index("idx_templates_priority", "priority"),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    mention_type: Mapped[MentionType] = mapped_column(
        Enum(MentionType, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    variables: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=10)  # lower wins
    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    @classmethod
    def new(
        cls,
        account_id: str,
        name: str,
        mention_type: MentionType,
        content: str,
        priority: int = 10,
        is_active: bool = True,
        conditions: Optional[TemplateConditions] = None,
    ) -> "Template":
        template = cls(
            account_id=account_id,
            name=name,
            mention_type=MentionType(mention_type),
            content=content,
            variables=extract_variables(content),
            is_active=is_active,
            priority=priority,
            conditions=conditions.model_dump() if conditions is not None else None,
        )
        template._init_base()
        return template

    def get_conditions(self) -> Optional[TemplateConditions]:
        if self.conditions is None:
            return None
        return TemplateConditions.model_validate(self.conditions)

    def matches_conditions(self, analysis: MentionAnalysis) -> bool:
        conditions = self.get_conditions()
        if conditions is None:
            return True
        return conditions.matches(analysis)

    def render(self, variables: TemplateVariables) -> str:
        return render_template(self.content, variables)

    def __repr__(self) -> str:
        return (
            f"<Template(id={self.id}, name={self.name}, mention_type={self.mention_type}, "
            f"priority={self.priority}, active={self.is_active})>"
        )
