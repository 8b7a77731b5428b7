import inspect
from typing import Type, Any, Dict, Optional

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine

from daily_match.application.interfaces import (
    AbstractObjectStorage, AbstractTokenService, AbstractMetricsCollector,
    AbstractRateLimiter, AbstractUnitOfWork
)
from daily_match.application.use_cases import (
    AuthenticateUseCase, SelectDailyMatchUseCase, GetTodaysMatchUseCase, GetUserUseCase,
    ListUsersUseCase, UpdateUserUseCase, UpdateAvatarUseCase, DeleteAvatarUseCase,
    CleanupDailyViewsUseCase
)
from daily_match.config import config, DEFAULT_JWT_SECRET
from daily_match.domain.signature import TelegramInitDataVerifier
from daily_match.infrastructure.orm import create_tables
from daily_match.infrastructure.services import RedisRateLimiter, PrometheusMetricsCollector
from daily_match.infrastructure.storage import LocalObjectStorage
from daily_match.infrastructure.tokens import JWTTokenService
from daily_match.infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='container')


class ServiceNotRegisteredError(Exception):
    """Исключение для незарегистрированного сервиса"""
    pass


class ServiceContainer:

    def __init__(self):
        self._services: Dict[Type, tuple] = {}
        self._singletons: Dict[Type, Any] = {}
        self._initialized = False

    def register_singleton(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать singleton сервис - зависимость, объявляемая
        всего один раз при инициализации контейнера
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            # Use case'ы регистрируются без отдельного интерфейса
            implementation = interface
        self._services[interface] = (implementation, True)

    def register_transient(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать transient сервис - новый экземпляр на каждый запрос
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            implementation = interface
        self._services[interface] = (implementation, False)

    def register_instance(self, interface: Type, instance: Any):
        """ Зарегистрировать готовый экземпляр """
        self._singletons[interface] = instance
        self._services[interface] = (type(instance), True)

    def is_registered(self, interface: Type) -> bool:
        return interface in self._services

    async def get(self, interface: Type):
        """ Получить экземпляр сервиса """
        if interface not in self._services:
            raise ServiceNotRegisteredError(f"Service {interface.__name__} not registered")

        implementation, is_singleton = self._services[interface]
        if is_singleton:
            if interface not in self._singletons:
                self._singletons[interface] = await self._create_instance(implementation)
            return self._singletons[interface]
        else:
            return await self._create_instance(implementation)

    async def _create_instance(self, implementation: Type):
        """ Создать экземпляр с dependency injection """

        # Получить параметры конструктора
        sig = inspect.signature(implementation.__init__)
        params = {}

        for param_name, param in sig.parameters.items():
            if param_name == 'self':
                continue

            # Попытаться разрешить зависимость по типу аннотации
            if param.annotation != inspect.Parameter.empty:
                if param.annotation in self._services:
                    params[param_name] = await self.get(param.annotation)
                elif hasattr(param.annotation, '__origin__'):
                    # Generic типы (Optional[Clock]) остаются по умолчанию
                    continue

        return implementation(**params)

    async def initialise(self):
        """ Инициализировать контейнер и все зависимости """

        if self._initialized:
            return

        # Создать подключения к внешним зависимостям
        await self._setup_external_connections()

        # Зарегистрировать все сервисы
        await self._register_services()

        self._initialized = True

    async def _setup_external_connections(self):
        """ Настроить подключения к внешним сервисам """
        # Redis нужен только ограничителю запросов
        if config.redis.url:
            try:
                redis_client = Redis.from_url(
                    url=config.redis.url,
                    max_connections=config.redis.max_connections,
                    retry_on_timeout=config.redis.retry_on_timeout,
                    socket_timeout=config.redis.socket_timeout,
                    socket_connect_timeout=config.redis.socket_connect_timeout,
                    decode_responses=True
                )
                await redis_client.ping()
                self.register_instance(Redis, redis_client)

            except Exception as e:
                logger.warning(f"Failed to connect to Redis: {e}. Rate limiting is disabled.")
        else:
            logger.warning("REDIS_URL is not set. Rate limiting is disabled.")

        # Без базы данных сервис работать не может
        engine = create_async_engine(
            url=config.database.url,
            pool_pre_ping=True,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
            echo=config.database.echo
        )
        self.register_instance(AsyncEngine, engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.register_instance(async_sessionmaker, session_factory)

        await create_tables(engine)
        logger.info("Database schema is ready")

    async def _register_services(self):
        """ Зарегистрировать все сервисы """

        # Infrastructure services
        self.register_singleton(AbstractObjectStorage, LocalObjectStorage)
        self.register_singleton(AbstractTokenService, JWTTokenService)
        if config.jwt.secret == DEFAULT_JWT_SECRET:
            logger.warning("JWT_SECRET is not set. Tokens are signed with the default secret.")
        self.register_singleton(AbstractMetricsCollector, PrometheusMetricsCollector)
        self.register_singleton(AbstractRateLimiter, RedisRateLimiter)
        self.register_instance(
            TelegramInitDataVerifier,
            TelegramInitDataVerifier(config.telegram.bot_token, config.telegram.auth_max_age)
        )

        # Use cases
        self.register_singleton(AuthenticateUseCase)
        self.register_singleton(SelectDailyMatchUseCase)
        self.register_singleton(GetTodaysMatchUseCase)
        self.register_singleton(GetUserUseCase)
        self.register_singleton(ListUsersUseCase)
        self.register_singleton(UpdateUserUseCase)
        self.register_singleton(UpdateAvatarUseCase)
        self.register_singleton(DeleteAvatarUseCase)
        self.register_singleton(CleanupDailyViewsUseCase)

        # UoW: свой экземпляр на каждый запрос
        self.register_transient(AbstractUnitOfWork, SQLAlchemyUnitOfWork)

    async def cleanup(self):
        """Очистить ресурсы"""

        # Закрыть соединения
        if Redis in self._singletons:
            await self._singletons[Redis].aclose()
        if AsyncEngine in self._singletons:
            await self._singletons[AsyncEngine].dispose()

        # Очистить состояния
        self._singletons.clear()
        self._initialized = False


class ServiceFactory:
    """ Фабрика для создания настроенного контейнера """

    @staticmethod
    async def create_container() -> ServiceContainer:
        """Создать и настроить контейнер"""
        container = ServiceContainer()
        await container.initialise()
        return container


# Глобальный контейнер (Singleton)
_container: Optional[ServiceContainer] = None


async def get_container() -> ServiceContainer:
    """ Получить глобальный контейнер """
    global _container
    if _container is None:
        _container = await ServiceFactory.create_container()

    return _container


async def cleanup_container() -> None:
    """Очистить глобальный контейнер"""
    global _container

    if _container is not None:
        await _container.cleanup()
        _container = None


# УДОБНЫЕ ФУНКЦИИ ДЛЯ ПОЛУЧЕНИЯ СЕРВИСОВ
async def get_unit_of_work() -> AbstractUnitOfWork:
    """ Новый Unit Of Work для запроса """
    container = await get_container()
    return await container.get(AbstractUnitOfWork)


async def get_token_service() -> AbstractTokenService:
    container = await get_container()
    return await container.get(AbstractTokenService)


async def get_metrics_collector() -> AbstractMetricsCollector:
    """ Получить сборщик метрик """
    container = await get_container()
    return await container.get(AbstractMetricsCollector)


async def get_rate_limiter() -> AbstractRateLimiter:
    container = await get_container()
    return await container.get(AbstractRateLimiter)
