"""
Глобальные обработчики ошибок API.

Доменные исключения переводятся в HTTP статус по типу исключения,
тело ответа всегда в общем конверте ApiResponse.
"""
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from daily_match.domain.exceptions import (
    DomainException, AuthError, MissingFieldError, InvalidCredentialError, ValidationError,
    NotFoundError, ConflictError, ExhaustedError, PersistenceError, StorageError
)
from daily_match.logconfig import opt_logger as log
from daily_match.models.user_models import ApiResponse, ErrorInfo

logger = log.setup_logger(name='error_handlers')

# Порядок важен: подклассы раньше базовых классов
ERROR_STATUS = (
    (AuthError, status.HTTP_401_UNAUTHORIZED, "AUTH_FAILED"),
    (InvalidCredentialError, status.HTTP_401_UNAUTHORIZED, "INVALID_TOKEN"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (ConflictError, status.HTTP_409_CONFLICT, "CONFLICT"),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_ERROR"),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR, "STORAGE_ERROR"),
)


def error_response(status_code: int, code: str, message: str, details: Optional[Any] = None) -> JSONResponse:
    body = ApiResponse(success=False, error=ErrorInfo(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode='json'))


def classify(exc: DomainException) -> tuple:
    """ HTTP статус и код ошибки для доменного исключения """
    for exc_type, status_code, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"


def register_error_handlers(app: FastAPI) -> None:
    """ Зарегистрировать все обработчики ошибок в приложении """

    @app.exception_handler(ExhaustedError)
    async def exhausted_handler(request: Request, exc: ExhaustedError):  # noqa
        # Штатное пустое состояние, а не ошибка
        body = ApiResponse(success=True, message=str(exc), data=None)
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode='json'))

    @app.exception_handler(DomainException)
    async def domain_error_handler(request: Request, exc: DomainException):
        status_code, code = classify(exc)

        details = None
        message = str(exc)
        if isinstance(exc, AuthError):
            details = {"kind": exc.kind.value}
            if isinstance(exc, MissingFieldError):
                details["field"] = exc.field
            message = "Invalid Telegram authentication data"
        elif isinstance(exc, PersistenceError):
            # Причину сбоя наружу не отдаем
            details = {"operation": exc.operation}
            message = "Database error"

        if status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
        else:
            logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return error_response(status_code, code, message, details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        details = [
            {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
            for e in exc.errors()
        ]
        return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request data", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):  # noqa
        return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))
