from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TelegramAuthRequest(BaseModel):
    """ Модель запроса на вход через Telegram WebApp """
    init_data: str = Field(..., alias="initData", min_length=1, description="Строка initData из WebApp")


class UpdateUserRequest(BaseModel):
    """ Модель частичного обновления профиля """
    display_name: Optional[str] = Field(None, min_length=1, max_length=50, description="Отображаемое имя")
    bio: Optional[str] = Field(None, max_length=500, description="О себе")
    avatar_url: Optional[str] = Field(None, description="URL аватара")


class UserResponse(BaseModel):
    """ Модель пользователя в ответе """
    id: UUID
    telegram_id: int
    display_name: str
    handle: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseModel):
    """ Модель ответа на успешный вход """
    user: UserResponse
    token: str
    token_type: str = "Bearer"
    expires_at: datetime


class ErrorInfo(BaseModel):
    code: str = Field(..., description="Машиночитаемый код ошибки")
    message: str
    details: Optional[Any] = None


class ApiResponse(BaseModel):
    """ Общий конверт ответа API """
    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[ErrorInfo] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class HealthResponse(BaseModel):
    """ Модель ответа проверки здоровья """
    status: str = Field(..., description="Статус сервиса")
    version: str
    database: str = Field(..., description="Состояние базы данных")
    redis: str = Field(..., description="Состояние Redis")
    timestamp: float = Field(..., description="Временная метка")
