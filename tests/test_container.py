from unittest.mock import Mock

import pytest

import daily_match.container as container_module
from daily_match.application.interfaces import (
    AbstractUnitOfWork, AbstractMetricsCollector, AbstractRateLimiter, AbstractTokenService
)
from daily_match.application.use_cases import AuthenticateUseCase, DeleteAvatarUseCase, ListUsersUseCase
from daily_match.config import DEFAULT_JWT_SECRET
from daily_match.container import ServiceContainer, ServiceNotRegisteredError
from daily_match.infrastructure.services import RedisRateLimiter
from daily_match.infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest.mark.asyncio
async def test_create_service_container(container: ServiceContainer):
    """ Тест с созданием экземляра контейнера"""
    assert hasattr(container, '_services')
    assert hasattr(container, '_singletons')
    assert hasattr(container, '_initialized')


@pytest.mark.asyncio
async def test_use_case_dependencies_injected_by_annotation(container):
    """ Тест с извлечением зависимости """
    use_case = await container.get(AuthenticateUseCase)
    assert use_case.metrics is await container.get(AbstractMetricsCollector)
    assert use_case.token_service is await container.get(AbstractTokenService)

    delete_avatar = await container.get(DeleteAvatarUseCase)
    assert delete_avatar is await container.get(DeleteAvatarUseCase)


@pytest.mark.asyncio
async def test_unit_of_work_is_transient(container):
    """ Каждый запрос получает свой Unit Of Work """
    first = await container.get(AbstractUnitOfWork)
    second = await container.get(AbstractUnitOfWork)
    assert isinstance(first, SQLAlchemyUnitOfWork)
    assert first is not second


@pytest.mark.asyncio
async def test_rate_limiter_without_redis(container):
    limiter = await container.get(AbstractRateLimiter)
    assert isinstance(limiter, RedisRateLimiter)
    assert limiter.redis is None


@pytest.mark.asyncio
async def test_unregistered_service():
    with pytest.raises(ServiceNotRegisteredError):
        await ServiceContainer().get(ListUsersUseCase)


@pytest.mark.asyncio
async def test_cleanup_method(container):
    """ Тест с очисткой контейнера """
    await container.cleanup()
    assert not container._singletons
    assert not container._initialized


@pytest.mark.asyncio
async def test_default_jwt_secret_warns(monkeypatch):
    """ Секрет по умолчанию допустим только с предупреждением в логе """
    logger = Mock()
    monkeypatch.setattr(container_module, 'logger', logger)
    monkeypatch.setattr(container_module.config.jwt, 'secret', DEFAULT_JWT_SECRET)

    await ServiceContainer()._register_services()

    logger.warning.assert_any_call("JWT_SECRET is not set. Tokens are signed with the default secret.")


@pytest.mark.asyncio
async def test_custom_jwt_secret_does_not_warn(monkeypatch):
    logger = Mock()
    monkeypatch.setattr(container_module, 'logger', logger)
    monkeypatch.setattr(container_module.config.jwt, 'secret', "s3cret")

    await ServiceContainer()._register_services()

    logger.warning.assert_not_called()
