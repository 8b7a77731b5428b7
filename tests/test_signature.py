import json
import random
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import pytest

from daily_match.domain.exceptions import (
    AuthErrorKind, InvalidSignatureError, MissingFieldError, StalePayloadError, MalformedUserError
)
from daily_match.domain.signature import (
    build_check_string, parse_init_data, sign, verify_init_data, TelegramInitDataVerifier
)

NOW = datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc)


def _signed_pairs(user: dict = None, auth_date: datetime = NOW, token: str = "S", **extra) -> dict:
    pairs = {"auth_date": str(int(auth_date.timestamp())), **extra}
    if user is not None:
        pairs["user"] = json.dumps(user)
    pairs["hash"] = sign(pairs, token)
    return pairs


class TestCanonicalization:
    """ Строка проверки не зависит от порядка полей """

    def test_check_string_sorted_and_without_hash(self):
        pairs = {"user": "{}", "auth_date": "1", "hash": "abc", "query_id": "q1"}
        assert build_check_string(pairs) == "auth_date=1\nquery_id=q1\nuser={}"

    def test_shuffled_order_gives_same_signature(self):
        pairs = [("auth_date", "1715947200"), ("query_id", "q1"), ("user", '{"id":1}'), ("start_param", "x")]
        expected = sign(dict(pairs), "S")
        for _ in range(10):
            random.shuffle(pairs)
            assert sign(dict(pairs), "S") == expected

    def test_verify_accepts_any_field_order(self):
        pairs = _signed_pairs({"id": 7, "first_name": "Eve"}, query_id="q9")
        items = list(pairs.items())
        items.reverse()
        identity = verify_init_data(urlencode(items), "S", now=NOW)
        assert identity.external_id == 7
        assert identity.query_id == "q9"

    def test_first_value_wins_for_repeated_keys(self):
        assert parse_init_data("a=1&a=2&b=") == {"a": "1", "b": ""}


class TestConcreteScenario:
    """ secret="S", пользователь 42 "Ann" """

    def test_valid_payload_returns_identity(self):
        pairs = _signed_pairs({"id": 42, "first_name": "Ann"}, query_id="q1")
        identity = verify_init_data(urlencode(pairs), "S", now=NOW)

        assert identity.external_id == 42
        assert identity.user.first_name == "Ann"
        assert identity.query_id == "q1"
        assert identity.auth_date == NOW

    def test_mutated_first_name_is_rejected(self):
        pairs = _signed_pairs({"id": 42, "first_name": "Ann"}, query_id="q1")
        pairs["user"] = json.dumps({"id": 42, "first_name": "Bob"})

        with pytest.raises(InvalidSignatureError) as exc_info:
            verify_init_data(urlencode(pairs), "S", now=NOW)
        assert exc_info.value.kind is AuthErrorKind.INVALID_SIGNATURE


class TestRejections:

    def test_stale_payload_rejected_even_with_valid_signature(self):
        pairs = _signed_pairs({"id": 1, "first_name": "A"}, auth_date=NOW - timedelta(hours=24, seconds=1))
        with pytest.raises(StalePayloadError):
            verify_init_data(urlencode(pairs), "S", now=NOW)

    def test_payload_inside_window_accepted(self):
        pairs = _signed_pairs({"id": 1, "first_name": "A"}, auth_date=NOW - timedelta(hours=23))
        assert verify_init_data(urlencode(pairs), "S", now=NOW).external_id == 1

    def test_any_single_char_hash_tamper_rejected(self):
        pairs = _signed_pairs({"id": 1, "first_name": "A"})
        original = pairs["hash"]
        for position in range(len(original)):
            replacement = "0" if original[position] != "0" else "1"
            pairs["hash"] = original[:position] + replacement + original[position + 1:]
            with pytest.raises(InvalidSignatureError):
                verify_init_data(urlencode(pairs), "S", now=NOW)

    def test_wrong_secret_rejected(self):
        pairs = _signed_pairs({"id": 1, "first_name": "A"}, token="other")
        with pytest.raises(InvalidSignatureError):
            verify_init_data(urlencode(pairs), "S", now=NOW)

    def test_missing_hash(self):
        with pytest.raises(MissingFieldError) as exc_info:
            verify_init_data("auth_date=1&user=%7B%7D", "S", now=NOW)
        assert exc_info.value.field == "hash"

    def test_missing_auth_date(self):
        pairs = {"user": json.dumps({"id": 1})}
        pairs["hash"] = sign(pairs, "S")
        with pytest.raises(MissingFieldError) as exc_info:
            verify_init_data(urlencode(pairs), "S", now=NOW)
        assert exc_info.value.field == "auth_date"

    def test_missing_user(self):
        pairs = _signed_pairs(None)
        with pytest.raises(MissingFieldError) as exc_info:
            verify_init_data(urlencode(pairs), "S", now=NOW)
        assert exc_info.value.field == "user"
        assert exc_info.value.kind is AuthErrorKind.MISSING_FIELD

    @pytest.mark.parametrize("raw_user", [
        "not json", "[1, 2]", '{"id": "42"}', '{"id": true}',
        '{"id": 42, "first_name": "Ann", "last_name": 5}',
        '{"id": 42, "first_name": "Ann", "photo_url": ["x"]}',
    ])
    def test_malformed_user(self, raw_user):
        pairs = {"auth_date": str(int(NOW.timestamp())), "user": raw_user}
        pairs["hash"] = sign(pairs, "S")
        with pytest.raises(MalformedUserError):
            verify_init_data(urlencode(pairs), "S", now=NOW)


def test_verifier_binds_token_and_max_age():
    """ Верификатор с собственным окном свежести """
    verifier = TelegramInitDataVerifier("S", max_age=timedelta(minutes=5))
    pairs = _signed_pairs({"id": 5, "first_name": "A"}, auth_date=NOW - timedelta(minutes=10))
    with pytest.raises(StalePayloadError):
        verifier.verify(urlencode(pairs), now=NOW)
