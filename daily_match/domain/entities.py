from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Optional
from uuid import UUID, uuid4

from daily_match.domain.value_objects import VerifiedIdentity


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class User:
    """Пользователь сервиса, пришедший из Telegram WebApp"""
    telegram_id: int
    display_name: str
    handle: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not isinstance(self.telegram_id, int) or isinstance(self.telegram_id, bool):
            raise ValueError("Telegram id must be an integer")

    @property
    def has_avatar(self) -> bool:
        return bool(self.avatar_url)

    @staticmethod
    def make_handle(telegram_id: int, username: Optional[str]) -> str:
        """ @username, если он есть в Telegram, иначе id<telegram_id> """
        if username:
            return f"@{username}"
        return f"id{telegram_id}"

    @classmethod
    def from_identity(cls, identity: VerifiedIdentity) -> 'User':
        """Фабричный метод для первого входа через Telegram"""
        tg_user = identity.user
        handle = cls.make_handle(tg_user.id, tg_user.username)
        return cls(
            telegram_id=tg_user.id,
            display_name=(tg_user.full_name or handle)[:100],
            handle=handle,
            avatar_url=tg_user.photo_url or None,
        )

    def to_dict(self) -> dict:
        """Преобразование в словарь"""
        return {
            'id': str(self.id),
            'telegram_id': self.telegram_id,
            'display_name': self.display_name,
            'handle': self.handle,
            'avatar_url': self.avatar_url,
            'bio': self.bio,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


@dataclass
class DailyView:
    """Факт показа: зрителю viewer_id показали shown_user_id в день view_date"""
    viewer_id: UUID
    shown_user_id: UUID
    view_date: date
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.viewer_id == self.shown_user_id:
            raise ValueError("Cannot show user to themselves")
        if isinstance(self.view_date, datetime):
            raise ValueError("View date must be a calendar date, not a timestamp")
