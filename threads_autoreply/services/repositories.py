"""SQLAlchemy-backed repositories for accounts, mentions, replies and templates."""

from datetime import timedelta
from typing import Optional, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateEntryError, NotFoundError
from ..models import MentionStatus, MentionType
from ..orm import Account, Mention, Reply, Template
from ..orm.base import SqlalchemyBase, utcnow
from .database import DatabaseService

ModelT = TypeVar("ModelT", bound=SqlalchemyBase)


class _SqlalchemyRepository:
    """Create/get/update shared by every entity repository."""

    model: type[SqlalchemyBase]

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def _create(self, obj: ModelT) -> ModelT:
        try:
            async with self.db_service.session() as session:
                session.add(obj)
                await session.flush()
        except IntegrityError as e:
            raise DuplicateEntryError(
                f"{self.model.__tablename__} row violates a unique constraint"
            ) from e
        return obj

    async def _get(self, obj_id: str) -> ModelT:
        async with self.db_service.session() as session:
            obj = await session.get(self.model, obj_id)
            if obj is None or obj.is_deleted:
                raise NotFoundError(f"{self.model.__tablename__} {obj_id} not found")
            return obj

    async def _update(self, obj: ModelT) -> ModelT:
        try:
            async with self.db_service.session() as session:
                existing = await session.get(self.model, obj.id)
                if existing is None or existing.is_deleted:
                    raise NotFoundError(f"{self.model.__tablename__} {obj.id} not found")
                obj.updated_at = utcnow()
                await session.merge(obj)
        except IntegrityError as e:
            raise DuplicateEntryError(
                f"{self.model.__tablename__} update violates a unique constraint"
            ) from e
        return obj


class SqlAccountRepository(_SqlalchemyRepository):
    model = Account

    async def create(self, account: Account) -> Account:
        return await self._create(account)

    async def get_by_id(self, account_id: str) -> Account:
        return await self._get(account_id)

    async def get_by_platform_user_id(self, platform_user_id: str) -> Account:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Account).where(
                    Account.platform_user_id == platform_user_id,
                    Account.is_deleted == False,  # noqa: E712
                )
            )
            account = result.scalar_one_or_none()
            if account is None:
                raise NotFoundError(f"No account for platform user {platform_user_id}")
            return account

    async def update(self, account: Account) -> Account:
        return await self._update(account)


class SqlMentionRepository(_SqlalchemyRepository):
    model = Mention

    async def create(self, mention: Mention) -> Mention:
        return await self._create(mention)

    async def get_by_id(self, mention_id: str) -> Mention:
        return await self._get(mention_id)

    async def get_by_post_id(self, account_id: str, threads_post_id: str) -> Optional[Mention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Mention).where(
                    Mention.account_id == account_id,
                    Mention.threads_post_id == threads_post_id,
                    Mention.is_deleted == False,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()

    async def list_by_account(
        self, account_id: str, limit: int = 20, offset: int = 0
    ) -> list[Mention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Mention)
                .where(
                    Mention.account_id == account_id,
                    Mention.is_deleted == False,  # noqa: E712
                )
                .order_by(Mention.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def list_by_account_and_status(
        self, account_id: str, status: MentionStatus, limit: int = 20, offset: int = 0
    ) -> list[Mention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Mention)
                .where(
                    Mention.account_id == account_id,
                    Mention.status == status,
                    Mention.is_deleted == False,  # noqa: E712
                )
                .order_by(Mention.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def list_pending(self, limit: int = 50) -> list[Mention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Mention)
                .where(
                    Mention.status == MentionStatus.PENDING,
                    Mention.is_deleted == False,  # noqa: E712
                )
                .order_by(Mention.received_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update(self, mention: Mention) -> Mention:
        return await self._update(mention)

    async def claim_for_processing(self, mention: Mention, expected: MentionStatus) -> bool:
        """Persist the move to ``processing`` only if the row is still ``expected``.

        Returns False when another worker or process already moved the row.
        """
        statement = (
            update(Mention)
            .where(
                Mention.id == mention.id,
                Mention.status == expected,
                Mention.is_deleted == False,  # noqa: E712
            )
            .values(
                status=MentionStatus.PROCESSING,
                skip_reason=None,
                processed_at=None,
                updated_at=mention.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return await self.db_service.execute_write(statement) == 1

    async def count_replied_last_hour(self, account_id: str) -> int:
        cutoff = utcnow() - timedelta(hours=1)
        async with self.db_service.session() as session:
            result = await session.execute(
                select(func.count(Mention.id)).where(
                    Mention.account_id == account_id,
                    Mention.status == MentionStatus.REPLIED,
                    Mention.processed_at >= cutoff,
                    Mention.is_deleted == False,  # noqa: E712
                )
            )
            return result.scalar_one()


class SqlReplyRepository(_SqlalchemyRepository):
    model = Reply

    async def create(self, reply: Reply) -> Reply:
        return await self._create(reply)

    async def get_by_id(self, reply_id: str) -> Reply:
        return await self._get(reply_id)

    async def get_by_mention_id(self, mention_id: str) -> Optional[Reply]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Reply).where(
                    Reply.mention_id == mention_id,
                    Reply.is_deleted == False,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()

    async def list_by_account(
        self, account_id: str, limit: int = 20, offset: int = 0
    ) -> list[Reply]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Reply)
                .where(
                    Reply.account_id == account_id,
                    Reply.is_deleted == False,  # noqa: E712
                )
                .order_by(Reply.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def update(self, reply: Reply) -> Reply:
        return await self._update(reply)


class SqlTemplateRepository(_SqlalchemyRepository):
    model = Template

    async def create(self, template: Template) -> Template:
        return await self._create(template)

    async def get_by_id(self, template_id: str) -> Template:
        return await self._get(template_id)

    async def list_by_account(self, account_id: str) -> list[Template]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Template)
                .where(
                    Template.account_id == account_id,
                    Template.is_deleted == False,  # noqa: E712
                )
                .order_by(Template.priority.asc(), Template.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_active_by_type(
        self, account_id: str, mention_type: MentionType
    ) -> list[Template]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Template)
                .where(
                    Template.account_id == account_id,
                    Template.mention_type == mention_type,
                    Template.is_active == True,  # noqa: E712
                    Template.is_deleted == False,  # noqa: E712
                )
                .order_by(Template.priority.asc(), Template.created_at.desc())
            )
            return list(result.scalars().all())

    async def update(self, template: Template) -> Template:
        return await self._update(template)
