import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from starlette.middleware.cors import CORSMiddleware

from daily_match.config import config
from daily_match.container import get_container, cleanup_container
from daily_match.endpoints.error_handlers import register_error_handlers
from daily_match.endpoints.user_endpoints import router as user_router
from daily_match.handlers.bot_handler import TelegramBotService
from daily_match.handlers.retention_handler import retention_sweep, stop_task
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='main')


@asynccontextmanager
async def lifespan(app: FastAPI): # noqa
    """Главная функция"""
    logger.info("Starting Daily Match Service")
    logger.info(
        f"Configuration: Debug={config.debug},"
        f" Log Level={config.log_level}"
    )
    await get_container()

    tasks = [asyncio.create_task(retention_sweep(), name='retention_sweep')]

    if config.telegram.bot_token and config.telegram.polling:
        bot_service = TelegramBotService()
        tasks.append(asyncio.create_task(bot_service.start(), name='telegram_bot'))
        logger.info("Telegram bot worker started")
    else:
        logger.info("Telegram bot polling is disabled")

    yield

    for task in tasks:
        await stop_task(task)
    await cleanup_container()


def create_app() -> FastAPI:
    app = FastAPI(title="Daily Match Service", version=config.app_version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware, # noqa
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(user_router)

    # Аватары раздаются по публичному URL хранилища
    media_root = Path(config.storage.media_root)
    media_root.mkdir(parents=True, exist_ok=True)
    media_path = urlparse(config.storage.public_url).path or "/media"
    app.mount(media_path, StaticFiles(directory=media_root), name="media")
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        'daily_match.main:app',
        host='0.0.0.0',
        port=config.port,
        reload=config.debug
    )
