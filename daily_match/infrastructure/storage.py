import asyncio
from pathlib import Path
from typing import Optional

from daily_match.application.interfaces import AbstractObjectStorage
from daily_match.config import config
from daily_match.domain.exceptions import StorageError
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='storage')


class LocalObjectStorage(AbstractObjectStorage):
    """
    Файловое хранилище объектов под MEDIA_ROOT.
    Файлы раздаются приложением по public_url (см. main.py)
    """

    def __init__(self, root: str = None, public_url: str = None):
        self.root = Path(root or config.storage.media_root).resolve()
        self.public_url = (public_url or config.storage.public_url).rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        # Ключ не должен выводить за пределы корня
        if self.root not in path.parents:
            raise StorageError(f"Invalid object key: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error(f"Failed to store object {key}: {e}")
            raise StorageError(f"Failed to store object {key}") from e

        logger.debug(f"Stored object {key} ({len(data)} bytes, {content_type})")
        return f"{self.public_url}/{key}"

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            logger.error(f"Failed to delete object {key}: {e}")
            raise StorageError(f"Failed to delete object {key}") from e
        logger.debug(f"Deleted object {key}")

    def key_from_url(self, url: str) -> Optional[str]:
        if not url or not url.startswith(self.public_url + "/"):
            return None
        key = url[len(self.public_url) + 1:]
        return key or None
