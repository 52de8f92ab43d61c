"""Repository capability interfaces used by the pipeline.

The pipeline depends only on these protocols; ``repositories`` provides the
SQLAlchemy implementation and the test suite provides in-memory fakes.
"""

from typing import Optional, Protocol

from ..models import MentionStatus, MentionType
from ..orm import Account, Mention, Reply, Template


class AccountRepository(Protocol):
    async def create(self, account: Account) -> Account: ...

    async def get_by_id(self, account_id: str) -> Account: ...

    async def get_by_platform_user_id(self, platform_user_id: str) -> Account: ...

    async def update(self, account: Account) -> Account: ...


class MentionRepository(Protocol):
    async def create(self, mention: Mention) -> Mention: ...

    async def get_by_id(self, mention_id: str) -> Mention: ...

    async def get_by_post_id(self, account_id: str, threads_post_id: str) -> Optional[Mention]: ...

    async def list_by_account(
        self, account_id: str, limit: int = 20, offset: int = 0
    ) -> list[Mention]: ...

    async def list_by_account_and_status(
        self, account_id: str, status: MentionStatus, limit: int = 20, offset: int = 0
    ) -> list[Mention]: ...

    async def list_pending(self, limit: int = 50) -> list[Mention]: ...

    async def update(self, mention: Mention) -> Mention: ...

    async def claim_for_processing(self, mention: Mention, expected: MentionStatus) -> bool: ...

    async def count_replied_last_hour(self, account_id: str) -> int: ...


class ReplyRepository(Protocol):
    async def create(self, reply: Reply) -> Reply: ...

    async def get_by_id(self, reply_id: str) -> Reply: ...

    async def get_by_mention_id(self, mention_id: str) -> Optional[Reply]: ...

    async def list_by_account(
        self, account_id: str, limit: int = 20, offset: int = 0
    ) -> list[Reply]: ...

    async def update(self, reply: Reply) -> Reply: ...


class TemplateRepository(Protocol):
    async def create(self, template: Template) -> Template: ...

    async def get_by_id(self, template_id: str) -> Template: ...

    async def list_by_account(self, account_id: str) -> list[Template]: ...

    async def list_active_by_type(
        self, account_id: str, mention_type: MentionType
    ) -> list[Template]: ...

    async def update(self, template: Template) -> Template: ...
