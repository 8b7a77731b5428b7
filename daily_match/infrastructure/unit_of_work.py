from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from daily_match.application.interfaces import AbstractUnitOfWork
from daily_match.domain.exceptions import PersistenceError
from daily_match.infrastructure.repositories import (
    SQLAlchemyUserRepository, SQLAlchemyDailyViewRepository
)
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='unit_of_work')


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """ Unit Of Work класс для атомарных операций с sqlalchemy """

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__()
        self.session_factory = session_factory
        self.session = None

    async def __aenter__(self):
        self.session = self.session_factory()
        self.users = SQLAlchemyUserRepository(self.session)
        self.views = SQLAlchemyDailyViewRepository(self.session)
        return await super().__aenter__()

    async def __aexit__(self, *args):
        try:
            # Всегда откатываем, если не было явного коммита
            await super().__aexit__(*args)

        except Exception as e:
            logger.error(f"UoW {id(self)} - Exception in __aexit__: {e}")
            raise

        finally:
            if self.session is not None:
                await self.session.close()
                self.session = None

    async def _rollback(self):
        if self.session is not None and self.session.in_transaction():
            logger.debug(f"UoW {id(self)} - Rolling back uncommitted transaction")
            await self.session.rollback()

    async def _commit(self):
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"UoW {id(self)} - Commit failed: {e}")
            await self.session.rollback()
            raise PersistenceError("commit", e) from e
