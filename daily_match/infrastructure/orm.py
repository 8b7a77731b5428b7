from sqlalchemy import (
    MetaData, Table, Column, String, BigInteger, Integer, Text,
    Date, DateTime, ForeignKey, UniqueConstraint, Index, Uuid
)
from sqlalchemy.ext.asyncio import AsyncEngine

from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='orm')


metadata = MetaData()

users = Table(
    'users',
    metadata,
    Column('id', Uuid, primary_key=True),
    # Ровно один пользователь на telegram_id
    Column('telegram_id', BigInteger, nullable=False, unique=True),
    Column('display_name', String(100), nullable=False),
    Column('handle', String(100), nullable=True),
    Column('avatar_url', Text, nullable=True),
    Column('bio', String(500), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False)
)

user_daily_views = Table(
    'user_daily_views',
    metadata,
    Column('id', BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True),
    Column('viewer_id', ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('shown_user_id', ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('view_date', Date, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Зрителю показывают пользователя не больше одного раза в день
    UniqueConstraint('viewer_id', 'shown_user_id', 'view_date', name='uq_daily_view'),
    Index('ix_daily_views_viewer_date', 'viewer_id', 'view_date'),
    Index('ix_daily_views_view_date', 'view_date')
)


async def create_tables(engine: AsyncEngine, drop: bool = False):
    """ Создает таблицы в базе данных """
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
    logger.debug("Database tables created successfully")
