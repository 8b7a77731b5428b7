import json
from dataclasses import dataclass
from datetime import datetime, date, timezone, tzinfo
from typing import Optional, Dict, Any
from uuid import UUID


@dataclass(frozen=True)
class TelegramUser:
    """ Пользователь из поля user в initData """
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    language_code: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    @classmethod
    def from_json(cls, raw: str) -> 'TelegramUser':
        """ Разбор JSON-объекта. Бросает ValueError на любом несоответствии """
        try:
            data: Dict[str, Any] = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"user is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("user must be a JSON object")

        user_id = data.get('id')
        # bool - подкласс int, его не принимаем
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise ValueError("user.id must be an integer")

        for field in ('first_name', 'last_name', 'username', 'photo_url', 'language_code'):
            value = data.get(field)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"user.{field} must be a string")

        return cls(
            id=user_id,
            first_name=data.get('first_name') or '',
            last_name=data.get('last_name') or None,
            username=data.get('username') or None,
            photo_url=data.get('photo_url') or None,
            language_code=data.get('language_code') or None,
        )


@dataclass(frozen=True)
class VerifiedIdentity:
    """ Проверенные данные WebApp, живут в пределах одного вызова аутентификации """
    user: TelegramUser
    auth_date: datetime
    query_id: Optional[str] = None
    start_param: Optional[str] = None

    @property
    def external_id(self) -> int:
        return self.user.id


@dataclass(frozen=True)
class Credential:
    """ Подписанный токен доступа, привязанный к одному пользователю """
    token: str
    user_id: UUID
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token': self.token,
            'token_type': 'Bearer',
            'expires_at': self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class AvatarUpload:
    """ Загружаемый файл аватара """
    data: bytes
    file_name: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def day_key(moment: datetime, tz: tzinfo = timezone.utc) -> date:
    """ Календарный день момента в заданной зоне (по умолчанию UTC) """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()
