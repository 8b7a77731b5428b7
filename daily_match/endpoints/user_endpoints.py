import time
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from daily_match.application.interfaces import (
    AbstractUnitOfWork, AbstractTokenService, AbstractRateLimiter, AbstractMetricsCollector
)
from daily_match.application.use_cases import (
    AuthenticateUseCase, SelectDailyMatchUseCase, GetTodaysMatchUseCase, GetUserUseCase,
    ListUsersUseCase, UpdateUserUseCase, UpdateAvatarUseCase, DeleteAvatarUseCase
)
from daily_match.config import config
from daily_match.container import ServiceContainer, get_container
from daily_match.domain.entities import User
from daily_match.domain.exceptions import InvalidCredentialError
from daily_match.domain.value_objects import AvatarUpload
from daily_match.logconfig import opt_logger as log
from daily_match.models.user_models import (
    TelegramAuthRequest, UpdateUserRequest, UserResponse, AuthResponse, ApiResponse, HealthResponse
)


logger = log.setup_logger(name='user_endpoints')

router = APIRouter(prefix="/api/v1")

bearer_scheme = HTTPBearer(auto_error=False)


def _user_response(user: User) -> UserResponse:
    return UserResponse(**user.to_dict())


async def get_current_user_id(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        container: ServiceContainer = Depends(get_container)
) -> UUID:
    """ ID пользователя из заголовка Authorization: Bearer <token> """
    if credentials is None:
        raise InvalidCredentialError("Authorization header required")
    token_service: AbstractTokenService = await container.get(AbstractTokenService)
    return token_service.verify(credentials.credentials)


async def _enforce_rate_limit(container: ServiceContainer, key: str):
    limiter: AbstractRateLimiter = await container.get(AbstractRateLimiter)
    if not await limiter.is_allowed(key):
        logger.warning(f"Rate limit exceeded for {key}")
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many requests")


@router.post("/auth/telegram", response_model=ApiResponse)
async def authenticate_telegram(
        request_data: TelegramAuthRequest,
        request: Request,
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    """
    Вход через Telegram WebApp: проверка initData и выдача токена
    """
    client = request.client.host if request.client else "unknown"
    await _enforce_rate_limit(container, f"auth:{client}")

    use_case: AuthenticateUseCase = await container.get(AuthenticateUseCase)
    uow: AbstractUnitOfWork = await container.get(AbstractUnitOfWork)
    user, credential = await use_case.execute(request_data.init_data, uow)

    auth = AuthResponse(
        user=_user_response(user),
        token=credential.token,
        expires_at=credential.expires_at
    )
    return ApiResponse(success=True, message="Authentication successful", data=auth)


@router.get("/users", response_model=ApiResponse)
async def list_users(
        limit: int = Query(100, ge=1, le=100),
        offset: int = Query(0, ge=0),
        _: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: ListUsersUseCase = await container.get(ListUsersUseCase)
    uow = await container.get(AbstractUnitOfWork)
    users: List[User] = await use_case.execute(uow, limit=limit, offset=offset)
    return ApiResponse(success=True, data=[_user_response(user) for user in users])


@router.get("/users/me", response_model=ApiResponse)
async def get_me(
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: GetUserUseCase = await container.get(GetUserUseCase)
    user = await use_case.execute(user_id, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, data=_user_response(user))


@router.put("/users/me", response_model=ApiResponse)
async def update_me(
        request_data: UpdateUserRequest,
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: UpdateUserUseCase = await container.get(UpdateUserUseCase)
    changes = request_data.model_dump(exclude_unset=True)
    user = await use_case.execute(user_id, changes, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, message="User updated successfully", data=_user_response(user))


@router.put("/users/me/avatar", response_model=ApiResponse)
async def update_avatar(
        file: UploadFile = File(...),
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    """
    Загрузить новый аватар (multipart/form-data, поле file)
    """
    # Читаем не больше лимита + 1 байт, чтобы отличить слишком большой файл
    data = await file.read(config.storage.max_avatar_size + 1)
    upload = AvatarUpload(data=data, file_name=file.filename or "", content_type=file.content_type or "")

    use_case: UpdateAvatarUseCase = await container.get(UpdateAvatarUseCase)
    user = await use_case.execute(user_id, upload, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, message="Avatar updated successfully", data=_user_response(user))


@router.delete("/users/me/avatar", response_model=ApiResponse)
async def delete_avatar(
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: DeleteAvatarUseCase = await container.get(DeleteAvatarUseCase)
    user = await use_case.execute(user_id, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, message="Avatar deleted successfully", data=_user_response(user))


@router.get("/users/random", response_model=ApiResponse)
async def get_random_user(
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    """
    Пара дня: случайный пользователь, которого зритель сегодня еще не видел
    """
    await _enforce_rate_limit(container, f"random:{user_id}")

    use_case: SelectDailyMatchUseCase = await container.get(SelectDailyMatchUseCase)
    user = await use_case.execute(user_id, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, data=_user_response(user))


@router.get("/users/daily", response_model=ApiResponse)
async def get_todays_user(
        user_id: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: GetTodaysMatchUseCase = await container.get(GetTodaysMatchUseCase)
    user = await use_case.execute(user_id, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, data=_user_response(user))


@router.get("/users/{user_id}", response_model=ApiResponse)
async def get_user(
        user_id: UUID,
        _: UUID = Depends(get_current_user_id),
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    use_case: GetUserUseCase = await container.get(GetUserUseCase)
    user = await use_case.execute(user_id, await container.get(AbstractUnitOfWork))
    return ApiResponse(success=True, data=_user_response(user))


@router.get("/health", response_model=ApiResponse)
async def health_check(
        container: ServiceContainer = Depends(get_container)
) -> ApiResponse:
    """
    Проверка здоровья сервиса
    """
    database = "unavailable"
    if container.is_registered(AsyncEngine):
        try:
            engine: AsyncEngine = await container.get(AsyncEngine)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database = "error"

    redis_state = "disabled"
    if container.is_registered(Redis):
        try:
            redis_client: Redis = await container.get(Redis)
            await redis_client.ping()
            redis_state = "ok"
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            redis_state = "error"

    health = HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=config.app_version,
        database=database,
        redis=redis_state,
        timestamp=time.time()
    )
    return ApiResponse(success=True, data=health)


@router.get("/metrics")
async def get_metrics(
        container: ServiceContainer = Depends(get_container)
) -> Response:
    """
    Получить метрики сервиса в формате Prometheus
    """
    metrics_collector: AbstractMetricsCollector = await container.get(AbstractMetricsCollector)
    metrics_data = await metrics_collector.get_metrics()
    content = metrics_data.get('prometheus_metrics', '')
    if not content:
        content = '# No metrics available\n'
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST
    )
