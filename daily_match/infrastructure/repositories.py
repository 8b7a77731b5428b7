from datetime import date, datetime, timezone
from typing import List, Optional, Dict, Any, Iterable, Set
from uuid import UUID

from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from daily_match.application.interfaces import (
    AbstractUserRepository, AbstractDailyViewRepository
)
from daily_match.domain.entities import User, DailyView, utcnow
from daily_match.domain.exceptions import (
    PersistenceError, DuplicateIdentityError, NoFieldsToUpdateError, UserNotFoundException
)
from daily_match.infrastructure.orm import users as users_table, user_daily_views as views_table
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='repositories')


def _aware(value: datetime) -> datetime:
    # SQLite отдает naive datetime, храним всегда UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        telegram_id=row.telegram_id,
        display_name=row.display_name,
        handle=row.handle,
        avatar_url=row.avatar_url,
        bio=row.bio,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at)
    )


class SQLAlchemyRepository:
    """ Общая часть репозиториев: выполнение запросов в сессии UoW """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _execute(self, stmt, operation: str, allow_conflict: bool = False):
        try:
            return await self._session.execute(stmt)
        except IntegrityError as e:
            if allow_conflict:
                raise
            logger.error(f"Integrity violation during {operation}: {e}")
            await self._session.rollback()
            raise PersistenceError(operation, e) from e
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            # Транзакция после ошибки непригодна, освобождаем сессию
            await self._session.rollback()
            raise PersistenceError(operation, e) from e


class SQLAlchemyUserRepository(SQLAlchemyRepository, AbstractUserRepository):

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        stmt = select(users_table).where(users_table.c.id == user_id)
        result = await self._execute(stmt, "get user by id")
        row = result.first()
        return _row_to_user(row) if row else None

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        stmt = select(users_table).where(users_table.c.telegram_id == telegram_id)
        result = await self._execute(stmt, "get user by telegram id")
        row = result.first()
        return _row_to_user(row) if row else None

    async def create(self, user: User) -> User:
        stmt = insert(users_table).values(
            id=user.id,
            telegram_id=user.telegram_id,
            display_name=user.display_name,
            handle=user.handle,
            avatar_url=user.avatar_url,
            bio=user.bio,
            created_at=user.created_at,
            updated_at=user.updated_at
        )
        try:
            await self._execute(stmt, "create user", allow_conflict=True)
        except IntegrityError as e:
            await self._session.rollback()
            logger.debug(f"User with telegram_id {user.telegram_id} already exists")
            raise DuplicateIdentityError(
                f"User with telegram_id {user.telegram_id} already exists"
            ) from e

        logger.debug(f"Created user {user.id} (telegram_id: {user.telegram_id})")
        return user

    async def update(self, user_id: UUID, changes: Dict[str, Any]) -> User:
        values = {key: value for key, value in changes.items() if key in self.UPDATABLE_FIELDS}
        if not values:
            raise NoFieldsToUpdateError("No fields to update")

        values['updated_at'] = utcnow()
        stmt = (
            update(users_table)
            .where(users_table.c.id == user_id)
            .values(**values)
        )
        result = await self._execute(stmt, "update user")
        if result.rowcount == 0:
            raise UserNotFoundException(f"User {user_id} not found")

        user = await self.get_by_id(user_id)
        logger.debug(f"Updated user {user_id}: {sorted(values)}")
        return user

    async def get_random_excluding(self, exclude_ids: Iterable[UUID]) -> Optional[User]:
        """ Случайный выбор на стороне БД: NOT IN + ORDER BY random() LIMIT 1 """
        exclude_ids = list(set(exclude_ids))
        stmt = select(users_table)
        if exclude_ids:
            stmt = stmt.where(users_table.c.id.not_in(exclude_ids))
        stmt = stmt.order_by(func.random()).limit(1)

        result = await self._execute(stmt, "get random user")
        row = result.first()
        return _row_to_user(row) if row else None

    async def list(self, limit: int = 100, offset: int = 0) -> List[User]:
        stmt = (
            select(users_table)
            .order_by(users_table.c.created_at, users_table.c.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._execute(stmt, "list users")
        return [_row_to_user(row) for row in result.all()]


class SQLAlchemyDailyViewRepository(SQLAlchemyRepository, AbstractDailyViewRepository):

    async def record_view(self, view: DailyView) -> bool:
        stmt = insert(views_table).values(
            viewer_id=view.viewer_id,
            shown_user_id=view.shown_user_id,
            view_date=view.view_date,
            created_at=view.created_at
        )
        try:
            await self._execute(stmt, "record daily view", allow_conflict=True)
        except IntegrityError:
            # Параллельный запрос уже записал ту же тройку
            await self._session.rollback()
            logger.debug(
                f"Daily view already recorded: viewer {view.viewer_id}, "
                f"shown user {view.shown_user_id}, date {view.view_date.isoformat()}"
            )
            return False

        logger.debug(
            f"Created daily view: viewer {view.viewer_id}, "
            f"shown user {view.shown_user_id}, date {view.view_date.isoformat()}"
        )
        return True

    async def get_shown_ids(self, viewer_id: UUID, view_date: date) -> Set[UUID]:
        stmt = (
            select(views_table.c.shown_user_id)
            .where(views_table.c.viewer_id == viewer_id)
            .where(views_table.c.view_date == view_date)
        )
        result = await self._execute(stmt, "get shown users")
        return set(result.scalars().all())

    async def get_first_shown(self, viewer_id: UUID, view_date: date) -> Optional[User]:
        stmt = (
            select(users_table)
            .join(views_table, views_table.c.shown_user_id == users_table.c.id)
            .where(views_table.c.viewer_id == viewer_id)
            .where(views_table.c.view_date == view_date)
            .order_by(views_table.c.created_at.asc(), views_table.c.id.asc())
            .limit(1)
        )
        result = await self._execute(stmt, "get today's daily user")
        row = result.first()
        return _row_to_user(row) if row else None

    async def cleanup_before(self, cutoff: date) -> int:
        stmt = delete(views_table).where(views_table.c.view_date < cutoff)
        result = await self._execute(stmt, "cleanup daily views")
        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} daily view records older than {cutoff.isoformat()}")
        return deleted
