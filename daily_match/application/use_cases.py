import asyncio
import time
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Optional, List, Tuple, Callable, Dict, Any
from uuid import UUID, uuid4

from daily_match.application.interfaces import (
    AbstractUnitOfWork, AbstractTokenService, AbstractMetricsCollector, AbstractObjectStorage
)
from daily_match.config import config
from daily_match.domain.entities import User, DailyView
from daily_match.domain.exceptions import (
    AuthError, DuplicateIdentityError, PersistenceError, ExhaustedError,
    UserNotFoundException, NotFoundError, InvalidAvatarError, NoAvatarError, StorageError,
    ValidationError
)
from daily_match.domain.signature import TelegramInitDataVerifier
from daily_match.domain.value_objects import Credential, AvatarUpload, day_key
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='use cases')

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(tz=timezone.utc)


class AuthenticateUseCase:
    """ Use case для входа через Telegram WebApp: проверка initData, пользователь, токен """

    def __init__(
        self,
        verifier: TelegramInitDataVerifier,
        token_service: AbstractTokenService,
        metrics_collector: AbstractMetricsCollector
    ):
        self.verifier = verifier
        self.token_service = token_service
        self.metrics = metrics_collector

    async def execute(self, init_data: str, uow: AbstractUnitOfWork) -> Tuple[User, Credential]:
        """ Выполнить аутентификацию и вернуть актуального пользователя и токен """
        start_time = time.time()

        try:
            identity = self.verifier.verify(init_data)
        except AuthError as e:
            logger.warning(f"Invalid telegram data ({e.kind.value}): {e}")
            await self.metrics.record_auth_attempt(e.kind.value, time.time() - start_time)
            raise

        try:
            async with uow:
                user = await uow.users.get_by_telegram_id(identity.external_id)
                if user is None:
                    user = await self._create_user(identity, uow)

        except PersistenceError as e:
            logger.error(f"Database error authenticating telegram user {identity.external_id}: {e}")
            await self.metrics.record_auth_attempt('persistence_error', time.time() - start_time)
            raise

        credential = self.token_service.issue(user.id)

        await self.metrics.record_auth_attempt('success', time.time() - start_time)
        logger.info(f"User authenticated: {user.handle} ({user.telegram_id})")
        return user, credential

    async def _create_user(self, identity, uow: AbstractUnitOfWork) -> User:
        """ Создать пользователя при первом входе. Гонку разрешает уникальность telegram_id """
        new_user = User.from_identity(identity)

        try:
            await uow.users.create(new_user)
            await uow.commit()

        except DuplicateIdentityError:
            # Параллельный первый вход успел раньше, продолжаем с его записью
            logger.info(f"Telegram user {identity.external_id} created concurrently, re-fetching")
            winner = await uow.users.get_by_telegram_id(identity.external_id)
            if winner is None:
                raise PersistenceError("resolve duplicate identity")
            return winner

        await self.metrics.record_user_created()
        logger.info(f"Created new user from Telegram: {new_user.handle} ({new_user.telegram_id})")
        return new_user


class SelectDailyMatchUseCase:
    """ Use case для выбора нового пользователя, которого зритель сегодня еще не видел """

    def __init__(self, metrics_collector: AbstractMetricsCollector, clock: Optional[Clock] = None):
        self.metrics = metrics_collector
        self._clock = clock or system_clock

    async def execute(self, viewer_id: UUID, uow: AbstractUnitOfWork) -> User:
        """
        Выбрать пару дня для зрителя
        :raises ExhaustedError: на сегодня показаны все пользователи
        :raises PersistenceError: хранилище недоступно
        """
        start_time = time.time()
        # Единственный источник "сегодня" и для чтения, и для записи
        today = day_key(self._clock(), config.day_timezone)

        degraded = False
        async with uow:
            try:
                shown_today = await uow.views.get_shown_ids(viewer_id, today)
            except PersistenceError as e:
                # Деградация: исключаем только самого зрителя
                logger.warning(f"Failed to get today's shown users for viewer {viewer_id}: {e}")
                await self.metrics.record_error('shown_users_read_error')
                shown_today, degraded = set(), True

            excluded = {viewer_id} | set(shown_today)
            logger.debug(f"Excluding {len(excluded) - 1} users for viewer {viewer_id}")

            candidate = await uow.users.get_random_excluding(excluded)

            if candidate is None or candidate.id in excluded:
                if candidate is not None:
                    logger.error(f"Store returned excluded user {candidate.id} for viewer {viewer_id}")
                logger.info(f"All users shown to viewer {viewer_id} today - no more users available")
                await self.metrics.record_daily_match('exhausted', time.time() - start_time, len(excluded))
                raise ExhaustedError("No more users available today")

            # Показ пишем только после выбора кандидата
            recorded = await uow.views.record_view(
                DailyView(viewer_id=viewer_id, shown_user_id=candidate.id, view_date=today)
            )
            if not recorded:
                logger.debug(f"Daily view {viewer_id} -> {candidate.id} already recorded concurrently")
            await uow.commit()

        outcome = 'degraded' if degraded else 'matched'
        await self.metrics.record_daily_match(outcome, time.time() - start_time, len(excluded))
        logger.info(f"Selected user {candidate.handle} ({candidate.id}) for viewer {viewer_id}")
        return candidate


class GetTodaysMatchUseCase:
    """ Первый пользователь, показанный зрителю сегодня """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or system_clock

    async def execute(self, viewer_id: UUID, uow: AbstractUnitOfWork) -> User:
        today = day_key(self._clock(), config.day_timezone)
        async with uow:
            user = await uow.views.get_first_shown(viewer_id, today)
        if user is None:
            raise NotFoundError("No daily user found for today")
        return user


class CleanupDailyViewsUseCase:
    """ Очистка истории показов старше N дней """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or system_clock

    async def execute(self, uow: AbstractUnitOfWork, days_to_keep: int = None) -> int:
        if days_to_keep is None:
            days_to_keep = config.retention.days_to_keep
        if days_to_keep < 1:
            raise ValueError("days_to_keep must be positive")

        cutoff = day_key(self._clock(), config.day_timezone) - timedelta(days=days_to_keep)
        async with uow:
            deleted = await uow.views.cleanup_before(cutoff)
            await uow.commit()
        return deleted


class GetUserUseCase:

    async def execute(self, user_id: UUID, uow: AbstractUnitOfWork) -> User:
        async with uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(f"User {user_id} not found")
        return user


class ListUsersUseCase:

    async def execute(self, uow: AbstractUnitOfWork, limit: int = 100, offset: int = 0) -> List[User]:
        async with uow:
            return await uow.users.list(limit=limit, offset=offset)


class UpdateUserUseCase:
    """ Частичное обновление профиля """

    MAX_DISPLAY_NAME = 50
    MAX_BIO = 500

    async def execute(self, user_id: UUID, changes: Dict[str, Any], uow: AbstractUnitOfWork) -> User:
        display_name = changes.get('display_name')
        if 'display_name' in changes and (not display_name or len(display_name) > self.MAX_DISPLAY_NAME):
            raise ValidationError(f"Display name must be 1-{self.MAX_DISPLAY_NAME} characters")
        bio = changes.get('bio')
        if bio is not None and len(bio) > self.MAX_BIO:
            raise ValidationError(f"Bio must be at most {self.MAX_BIO} characters")

        async with uow:
            user = await uow.users.update(user_id, changes)
            await uow.commit()
        logger.info(f"Updated user: {user_id}")
        return user


def owned_avatar_key(storage: AbstractObjectStorage, user_id: UUID, url: Optional[str]) -> Optional[str]:
    """
    Ключ объекта по ссылке на аватар, только если файл лежит в каталоге
    этого пользователя. Чужие и внешние ссылки не удаляются
    """
    key = storage.key_from_url(url)
    if key is None:
        return None
    parts = key.split("/")
    if parts[:2] != ["avatars", str(user_id)] or len(parts) < 3 or ".." in parts:
        return None
    return key


class UpdateAvatarUseCase:
    """
    Замена аватара: сначала загрузка нового файла, затем обновление
    пользователя, затем удаление старого файла. Если обновление не удалось
    (или вызов отменен), новый файл удаляется
    """

    def __init__(
        self,
        storage: AbstractObjectStorage,
        metrics_collector: AbstractMetricsCollector,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.metrics = metrics_collector
        self._clock = clock or system_clock

    async def execute(self, user_id: UUID, upload: AvatarUpload, uow: AbstractUnitOfWork) -> User:
        self._validate(upload)

        async with uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(f"User {user_id} not found")
        old_url = user.avatar_url

        key = self._object_key(user_id, upload.file_name)
        try:
            new_url = await self.storage.put(key, upload.data, upload.content_type)
        except StorageError:
            await self.metrics.record_avatar_operation('upload', 'storage_error')
            raise

        try:
            async with uow:
                updated = await uow.users.update(user_id, {'avatar_url': new_url})
                await uow.commit()
        except (Exception, asyncio.CancelledError):
            # Компенсация: не оставляем файл без ссылки на него
            await self._discard(key)
            await self.metrics.record_avatar_operation('upload', 'rolled_back')
            raise

        if old_url and old_url != new_url:
            await self._delete_quietly(user_id, old_url)

        await self.metrics.record_avatar_operation('upload', 'success')
        logger.info(f"Successfully updated avatar for user {user_id}: {new_url}")
        return updated

    @staticmethod
    def _validate(upload: AvatarUpload):
        if upload.size <= 0:
            raise InvalidAvatarError("Invalid file size")
        if upload.size > config.storage.max_avatar_size:
            raise InvalidAvatarError("Avatar file too large: maximum size is 2MB")
        if (upload.content_type or '').lower() not in config.storage.allowed_types:
            raise InvalidAvatarError("Invalid file type: only images are allowed (jpeg, png, gif, webp)")

    def _object_key(self, user_id: UUID, file_name: str) -> str:
        ext = PurePosixPath(file_name or '').suffix.lower() or '.jpg'
        timestamp = int(self._clock().timestamp())
        return f"avatars/{user_id}/{timestamp}_{uuid4()}{ext}"

    async def _discard(self, key: str):
        try:
            await self.storage.delete(key)
            logger.warning(f"Uploaded avatar {key} removed after failed user update")
        except StorageError as e:
            logger.error(f"Failed to cleanup avatar {key} after DB error: {e}")

    async def _delete_quietly(self, user_id: UUID, url: str):
        key = owned_avatar_key(self.storage, user_id, url)
        if key is None:
            logger.debug(f"Old avatar {url} is not owned by user {user_id}, skipping delete")
            return
        try:
            await self.storage.delete(key)
        except StorageError as e:
            logger.warning(f"Failed to delete old avatar {key}: {e}")


class DeleteAvatarUseCase:
    """ Удаление аватара: файл удаляется по возможности, ссылка очищается всегда """

    def __init__(self, storage: AbstractObjectStorage, metrics_collector: AbstractMetricsCollector):
        self.storage = storage
        self.metrics = metrics_collector

    async def execute(self, user_id: UUID, uow: AbstractUnitOfWork) -> User:
        async with uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(f"User {user_id} not found")
        if not user.has_avatar:
            raise NoAvatarError("User has no avatar")

        key = owned_avatar_key(self.storage, user_id, user.avatar_url)
        if key is None:
            logger.debug(f"Avatar {user.avatar_url} is not owned by user {user_id}, only clearing the link")
        else:
            try:
                await self.storage.delete(key)
            except StorageError as e:
                logger.error(f"Failed to delete avatar file: {e}")
                await self.metrics.record_avatar_operation('delete', 'storage_error')

        async with uow:
            updated = await uow.users.update(user_id, {'avatar_url': None})
            await uow.commit()

        await self.metrics.record_avatar_operation('delete', 'success')
        logger.info(f"Successfully deleted avatar for user {user_id}")
        return updated
