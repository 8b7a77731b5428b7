import json
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from daily_match.application.interfaces import AbstractObjectStorage
from daily_match.domain.entities import User
from daily_match.domain.exceptions import StorageError
from daily_match.domain.signature import sign
from daily_match.infrastructure.orm import create_tables
from daily_match.infrastructure.services import PrometheusMetricsCollector
from daily_match.infrastructure.unit_of_work import SQLAlchemyUnitOfWork

BOT_TOKEN = "S"


class FakeClock:
    """ Управляемые часы для проверки смены дня """

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeStorage(AbstractObjectStorage):
    """ Хранилище в памяти, записывающее все вызовы """

    PUBLIC_URL = "http://media.test"

    def __init__(self, fail_put: bool = False, fail_delete: bool = False):
        self.objects = {}
        self.calls = []
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.calls.append(("put", key))
        if self.fail_put:
            raise StorageError(f"Failed to store object {key}")
        self.objects[key] = data
        return f"{self.PUBLIC_URL}/{key}"

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        if self.fail_delete:
            raise StorageError(f"Failed to delete object {key}")
        self.objects.pop(key, None)

    def key_from_url(self, url: str):
        prefix = self.PUBLIC_URL + "/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):]


@pytest.fixture
async def engine(tmp_path):
    """ Отдельная файловая SQLite база на тест: параллельные сессии получают свои соединения """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'daily_match.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    """ Новый Unit Of Work на каждый вызов, как в контейнере """
    return lambda: SQLAlchemyUnitOfWork(session_factory)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def metrics_collector():
    """Фикстура для создания экземпляра PrometheusMetricsCollector"""
    return PrometheusMetricsCollector()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_user(uow_factory):
    """ Сохранить пользователя в базе и вернуть его """

    async def _make_user(telegram_id: int, display_name: str = None, **kwargs) -> User:
        user = User(telegram_id=telegram_id, display_name=display_name or f"user {telegram_id}", **kwargs)
        uow = uow_factory()
        async with uow:
            await uow.users.create(user)
            await uow.commit()
        return user

    return _make_user


@pytest.fixture
def init_data_factory():
    """ Собрать подписанную строку initData """

    def _build(user: dict = None, auth_date: datetime = None, bot_token: str = BOT_TOKEN, **extra) -> str:
        pairs = {
            "auth_date": str(int((auth_date or datetime.now(tz=timezone.utc)).timestamp())),
            **{key: str(value) for key, value in extra.items()},
        }
        if user is not None:
            pairs["user"] = json.dumps(user, separators=(",", ":"))
        pairs["hash"] = sign(pairs, bot_token)
        return urlencode(pairs)

    return _build


@pytest.fixture
async def container(engine, session_factory, storage, clock):
    """ Контейнер с тестовой SQLite базой, без Redis и внешних сервисов """
    from daily_match.application.interfaces import AbstractTokenService, AbstractMetricsCollector
    from daily_match.application.use_cases import (
        SelectDailyMatchUseCase, GetTodaysMatchUseCase, UpdateAvatarUseCase
    )
    from daily_match.container import ServiceContainer
    from daily_match.domain.signature import TelegramInitDataVerifier
    from daily_match.infrastructure.tokens import JWTTokenService
    from sqlalchemy.ext.asyncio import AsyncEngine

    container = ServiceContainer()
    container.register_instance(AsyncEngine, engine)
    container.register_instance(async_sessionmaker, session_factory)
    await container._register_services()

    metrics = PrometheusMetricsCollector()
    container.register_instance(AbstractMetricsCollector, metrics)
    container.register_instance(AbstractObjectStorage, storage)
    container.register_instance(AbstractTokenService, JWTTokenService(secret="test-secret"))
    container.register_instance(TelegramInitDataVerifier, TelegramInitDataVerifier(BOT_TOKEN))
    container.register_instance(SelectDailyMatchUseCase, SelectDailyMatchUseCase(metrics, clock=clock))
    container.register_instance(GetTodaysMatchUseCase, GetTodaysMatchUseCase(clock=clock))
    container.register_instance(UpdateAvatarUseCase, UpdateAvatarUseCase(storage, metrics, clock=clock))

    yield container

    # Движок закрывает фикстура engine
    container._singletons.clear()
