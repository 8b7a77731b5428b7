"""
Domain exceptions - исключения бизнес-логики

Закрытый набор типов ошибок. Вызывающий слой различает их по классу
(и по ``AuthError.kind``), а не по тексту сообщения.
"""
from enum import Enum


class DomainException(Exception):
    """Базовое исключение для domain слоя"""
    pass


# --- Ошибки входных данных (виноват клиент) ---

class ValidationError(DomainException):
    """Некорректные, неполные или поддельные входные данные"""
    pass


class AuthErrorKind(Enum):
    INVALID_SIGNATURE = "invalid_signature"
    MISSING_FIELD = "missing_field"
    STALE_PAYLOAD = "stale_payload"
    MALFORMED_USER = "malformed_user"


class AuthError(ValidationError):
    """Ошибка проверки initData от Telegram"""
    kind: AuthErrorKind


class InvalidSignatureError(AuthError):
    kind = AuthErrorKind.INVALID_SIGNATURE


class MissingFieldError(AuthError):
    kind = AuthErrorKind.MISSING_FIELD

    def __init__(self, field: str):
        super().__init__(f"Field '{field}' is missing or invalid")
        self.field = field


class StalePayloadError(AuthError):
    kind = AuthErrorKind.STALE_PAYLOAD


class MalformedUserError(AuthError):
    kind = AuthErrorKind.MALFORMED_USER


class InvalidCredentialError(ValidationError):
    """Токен доступа отсутствует, подделан или истек"""
    pass


class InvalidAvatarError(ValidationError):
    """Файл аватара не прошел проверку размера или типа"""
    pass


class NoAvatarError(ValidationError):
    """У пользователя нет аватара для удаления"""
    pass


# --- Отсутствие сущности ---

class NotFoundError(DomainException):
    pass


class UserNotFoundException(NotFoundError):
    """Пользователь не найден"""
    pass


# --- Конфликты ---

class ConflictError(DomainException):
    pass


class NoFieldsToUpdateError(ConflictError):
    """Запрошено обновление без изменяемых полей"""
    pass


class DuplicateIdentityError(ConflictError):
    """Пользователь с таким telegram_id уже создан параллельным запросом"""
    pass


# --- Штатное пустое состояние ---

class ExhaustedError(DomainException):
    """На сегодня все пользователи уже показаны"""
    pass


# --- Сбои инфраструктуры ---

class PersistenceError(DomainException):
    """Хранилище недоступно или вернуло неожиданную ошибку"""

    def __init__(self, operation: str, cause: Exception = None):
        message = f"Persistence failure during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation


class StorageError(DomainException):
    """Не удалось сохранить или удалить файл в объектном хранилище"""
    pass
