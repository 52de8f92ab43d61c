"""ORM models for database persistence."""

from .account import Account
from .base import Base, SqlalchemyBase
from .mention import Mention
from .reply import Reply
from .template import Template

__all__ = [
    "Base",
    "SqlalchemyBase",
    "Account",
    "Mention",
    "Reply",
    "Template",
]
