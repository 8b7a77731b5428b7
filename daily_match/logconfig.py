import logging
import sys

from colorama import init, Fore, Style

from daily_match.config import config


def convert_level(level: str | int) -> int:
    """ Возвращает числовое значение уровня: 'dEbUG' -> 10 """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


class RootLogger:
    """ Логгер для режима отладки, работает с корневым регистром """

    def __init__(self):
        logging.basicConfig(
            level=convert_level(config.log_level),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler()]
        )

    @staticmethod
    def setup_logger(name: str, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(convert_level(level))
        return logger


class ColorFormatter(logging.Formatter):
    """ Форматтер, подсвечивающий только уровень логирования """

    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }
    # По самому длинному уровню "CRITICAL"
    LEVEL_WIDTH = 8
    NAME_WIDTH = 20

    def format(self, record):
        levelname, name = record.levelname, record.name

        short_name = name if len(name) <= self.NAME_WIDTH else name[: self.NAME_WIDTH - 3] + "..."
        record.levelname = (
            self.LEVEL_COLORS.get(levelname, "")
            + levelname.ljust(self.LEVEL_WIDTH)
            + Style.RESET_ALL
        )
        record.name = short_name.center(self.NAME_WIDTH)
        try:
            return super().format(record)
        finally:
            # Запись может уйти в другие обработчики
            record.levelname, record.name = levelname, name


class CustomLogger:
    """ Цветной консольный логгер для обычного режима """

    def __init__(self):
        # Кроссплатформенная поддержка цветов
        init()

    @staticmethod
    def setup_logger(name: str = None, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(convert_level(level))
        logger.handlers.clear()
        logger.propagate = False

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(convert_level(level))
        console_handler.setFormatter(ColorFormatter(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(console_handler)
        return logger


opt_logger = RootLogger() if config.debug else CustomLogger()
