from unittest.mock import AsyncMock, Mock

import pytest

from daily_match.handlers.bot_handler import BotHandler

WEB_APP_URL = "https://daily-match.example"


def _message(first_name: str = "Ann", text: str = "/start") -> Mock:
    message = Mock()
    message.text = text
    message.chat.id = 100
    message.from_user.first_name = first_name
    message.answer = AsyncMock()
    return message


@pytest.fixture
def handler():
    return BotHandler(web_app_url=WEB_APP_URL)


@pytest.mark.asyncio
async def test_start_greets_user(handler):
    message = _message("Ann")
    await handler.handle_start(message)

    text = message.answer.call_args.args[0]
    assert "Ann" in text
    assert WEB_APP_URL in text


@pytest.mark.asyncio
async def test_start_without_first_name(handler):
    message = _message("")
    await handler.handle_start(message)
    assert "пользователь" in message.answer.call_args.args[0]


@pytest.mark.asyncio
async def test_help_lists_commands(handler):
    message = _message(text="/help")
    await handler.handle_help(message)

    text = message.answer.call_args.args[0]
    for command in ("/start", "/app", "/help"):
        assert command in text


@pytest.mark.asyncio
async def test_default_reply_has_web_app_button(handler):
    message = _message(text="привет")
    await handler.handle_default(message)

    keyboard = message.answer.call_args.kwargs["reply_markup"]
    button = keyboard.inline_keyboard[0][0]
    assert button.web_app.url == WEB_APP_URL


def test_router_registers_handlers(handler):
    router = handler.build_router()
    assert len(router.message.handlers) == 4
