from datetime import date, datetime, timedelta, timezone

import pytest

from daily_match.domain.entities import User
from daily_match.domain.value_objects import TelegramUser, VerifiedIdentity, day_key


def _identity(**user_fields) -> VerifiedIdentity:
    return VerifiedIdentity(user=TelegramUser(**user_fields), auth_date=datetime.now(tz=timezone.utc))


def test_create_user_from_identity():
    user = User.from_identity(_identity(
        id=42, first_name="Ann", last_name="Lee", username="ann", photo_url="https://t.me/p.jpg"
    ))
    assert user.telegram_id == 42
    assert user.display_name == "Ann Lee"
    assert user.handle == "@ann"
    assert user.avatar_url == "https://t.me/p.jpg"
    assert user.has_avatar


def test_handle_without_username():
    assert User.make_handle(42, None) == "id42"
    assert User.make_handle(42, "") == "id42"


def test_display_name_falls_back_to_handle():
    user = User.from_identity(_identity(id=7, first_name=""))
    assert user.display_name == "id7"
    assert not user.has_avatar


def test_user_rejects_non_integer_telegram_id():
    with pytest.raises(ValueError):
        User(telegram_id="42", display_name="x")
    with pytest.raises(ValueError):
        User(telegram_id=True, display_name="x")


def test_day_key_uses_utc():
    moscow = timezone(timedelta(hours=3))
    # 01:00 по Москве 18 мая - это еще 17 мая в UTC
    assert day_key(datetime(2024, 5, 18, 1, 0, tzinfo=moscow)) == date(2024, 5, 17)
    assert day_key(datetime(2024, 5, 18, 1, 0)) == date(2024, 5, 18)


def test_telegram_user_from_json():
    user = TelegramUser.from_json('{"id": 1, "first_name": "A", "language_code": "ru"}')
    assert user.id == 1
    assert user.language_code == "ru"
    assert user.full_name == "A"
