import asyncio
from typing import Optional

from aiogram import Bot, Dispatcher, Router, F
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.types import Message, InlineKeyboardMarkup, InlineKeyboardButton, WebAppInfo

from daily_match.config import config
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='bot')


class BotHandler:
    """ Обработчик команд Telegram бота: ведет пользователя в WebApp """

    def __init__(self, web_app_url: str = None):
        self.web_app_url = web_app_url or config.telegram.web_app_url

    def build_router(self) -> Router:
        router = Router(name='daily_match_bot')
        router.message.register(self.handle_start, CommandStart())
        router.message.register(self.handle_app, Command("app"))
        router.message.register(self.handle_help, Command("help"))
        router.message.register(self.handle_default, F.text)
        return router

    def app_keyboard(self) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(inline_keyboard=[
            [InlineKeyboardButton(text="📱 Открыть приложение", web_app=WebAppInfo(url=self.web_app_url))]
        ])

    async def handle_start(self, message: Message):
        first_name = message.from_user.first_name if message.from_user else ""
        text = (
            f"👋 Привет, <b>{first_name or 'пользователь'}</b>!\n\n"
            "Добро пожаловать в <b>Daily Match</b>!\n\n"
            "🎯 Каждый день мы показываем тебе новых людей,\n"
            "и никого не показываем дважды за день.\n\n"
            f"🔗 Приложение: {self.web_app_url}\n\n"
            "Используй команду /app для получения ссылки"
        )
        logger.info(f"/start from {message.chat.id}")
        await message.answer(text, parse_mode=ParseMode.HTML)

    async def handle_app(self, message: Message):
        text = f"🔥 <b>Daily Match Web App</b>\n\nПриложение: {self.web_app_url}"
        await message.answer(text, parse_mode=ParseMode.HTML, reply_markup=self.app_keyboard())

    async def handle_help(self, message: Message):
        text = (
            "<b>🤖 Daily Match Bot</b>\n\n"
            "<b>Доступные команды:</b>\n"
            "/start - Приветствие и ссылка на приложение\n"
            "/app - Получить ссылку на приложение\n"
            "/help - Показать эту справку\n\n"
            "<b>Приложение:</b>\n"
            f"{self.web_app_url}"
        )
        await message.answer(text, parse_mode=ParseMode.HTML)

    async def handle_default(self, message: Message):
        text = f"Для работы с Daily Match перейди по ссылке:\n{self.web_app_url}"
        await message.answer(text, reply_markup=self.app_keyboard())


class TelegramBotService:
    """ Фоновый воркер long polling. Общего состояния с API нет """

    def __init__(self, token: str = None, handler: BotHandler = None):
        self.token = token or config.telegram.bot_token
        self.handler = handler or BotHandler()
        self.bot: Optional[Bot] = None
        self.dispatcher: Optional[Dispatcher] = None

    async def start(self):
        logger.info("Starting Telegram bot ...")
        self.bot = Bot(token=self.token)
        self.dispatcher = Dispatcher()
        self.dispatcher.include_router(self.handler.build_router())

        try:
            await self.dispatcher.start_polling(self.bot, handle_signals=False)
        except asyncio.CancelledError:
            logger.info("Telegram bot stopped")
            raise
        finally:
            await self.bot.session.close()
