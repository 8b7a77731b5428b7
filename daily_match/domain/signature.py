"""
Проверка подписи initData Telegram WebApp

Чистая функция без ввода-вывода: на вход строка initData, токен бота и
(опционально) текущее время, на выходе ``VerifiedIdentity`` либо ``AuthError``.
"""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union, Mapping
from urllib.parse import parse_qsl

from daily_match.domain.exceptions import (
    InvalidSignatureError, MissingFieldError, StalePayloadError, MalformedUserError
)
from daily_match.domain.value_objects import TelegramUser, VerifiedIdentity

# Константа доменного разделения из протокола Telegram WebApp
WEB_APP_DATA_KEY = b"WebAppData"
DEFAULT_MAX_AGE = timedelta(hours=24)


def parse_init_data(raw: Union[str, Mapping[str, str]]) -> Dict[str, str]:
    """ Разобрать URL-encoded initData. При повторе ключа побеждает первое значение """
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items()}

    pairs: Dict[str, str] = {}
    for key, value in parse_qsl(raw or "", keep_blank_values=True):
        pairs.setdefault(key, value)
    return pairs


def build_check_string(pairs: Mapping[str, str]) -> str:
    """ Строка проверки: пары key=value без hash, отсортированные и склеенные через \\n """
    return "\n".join(sorted(f"{key}={value}" for key, value in pairs.items() if key != "hash"))


def derive_secret(bot_token: Union[str, bytes]) -> bytes:
    if isinstance(bot_token, str):
        bot_token = bot_token.encode()
    return hmac.new(WEB_APP_DATA_KEY, bot_token, hashlib.sha256).digest()


def sign(pairs: Mapping[str, str], bot_token: Union[str, bytes]) -> str:
    """ Посчитать hex-подпись набора пар (используется и в тестах, и в проверке) """
    check_string = build_check_string(pairs).encode()
    return hmac.new(derive_secret(bot_token), check_string, hashlib.sha256).hexdigest()


def verify_init_data(
        raw: Union[str, Mapping[str, str]],
        bot_token: Union[str, bytes],
        now: Optional[datetime] = None,
        max_age: timedelta = DEFAULT_MAX_AGE
) -> VerifiedIdentity:
    """
    Проверить initData и извлечь личность пользователя
    :param raw: URL-encoded строка initData или уже разобранные пары
    :param bot_token: общий секрет (токен бота)
    :param now: текущее время, для тестов
    :param max_age: окно свежести auth_date
    :raises AuthError: MissingFieldError, InvalidSignatureError,
        StalePayloadError, MalformedUserError
    """
    pairs = parse_init_data(raw)

    received_hash = pairs.pop("hash", None)
    if not received_hash:
        raise MissingFieldError("hash")

    expected_hash = sign(pairs, bot_token)
    # Сравнение за постоянное время
    if not hmac.compare_digest(expected_hash.encode(), received_hash.encode()):
        raise InvalidSignatureError("Invalid hash signature")

    try:
        auth_timestamp = int(pairs["auth_date"])
    except (KeyError, ValueError):
        raise MissingFieldError("auth_date")

    now = now or datetime.now(tz=timezone.utc)
    auth_date = datetime.fromtimestamp(auth_timestamp, tz=timezone.utc)
    if now - auth_date > max_age:
        raise StalePayloadError(f"auth_date is older than {max_age}")

    raw_user = pairs.get("user")
    if raw_user is None:
        raise MissingFieldError("user")
    try:
        user = TelegramUser.from_json(raw_user)
    except ValueError as e:
        raise MalformedUserError(f"Failed to parse user data: {e}") from e

    return VerifiedIdentity(
        user=user,
        auth_date=auth_date,
        query_id=pairs.get("query_id") or None,
        start_param=pairs.get("start_param") or None,
    )


class TelegramInitDataVerifier:
    """ Верификатор с привязанным токеном бота, для внедрения в use case """

    def __init__(self, bot_token: Union[str, bytes], max_age: timedelta = DEFAULT_MAX_AGE):
        self._bot_token = bot_token
        self.max_age = max_age

    def verify(self, raw: Union[str, Mapping[str, str]], now: Optional[datetime] = None) -> VerifiedIdentity:
        return verify_init_data(raw, self._bot_token, now=now, max_age=self.max_age)
