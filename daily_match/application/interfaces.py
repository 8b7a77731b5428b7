from abc import ABC, abstractmethod
from datetime import date
from typing import Optional, List, Dict, Any, Iterable, Set, TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from daily_match.domain.entities import User, DailyView
    from daily_match.domain.value_objects import Credential


class AbstractUserRepository(ABC):
    """Интерфейс хранилища пользователей (Identity Store)"""

    # Поля, которые можно менять через update
    UPDATABLE_FIELDS = frozenset({'display_name', 'bio', 'avatar_url'})

    @abstractmethod
    async def get_by_id(self, user_id: UUID) -> Optional["User"]:
        """Найти пользователя по внутреннему ID"""
        raise NotImplementedError

    @abstractmethod
    async def get_by_telegram_id(self, telegram_id: int) -> Optional["User"]:
        """Найти пользователя по ID в Telegram"""
        raise NotImplementedError

    @abstractmethod
    async def create(self, user: "User") -> "User":
        """
        Сохранить нового пользователя
        :raises DuplicateIdentityError: telegram_id уже занят
        """
        raise NotImplementedError

    @abstractmethod
    async def update(self, user_id: UUID, changes: Dict[str, Any]) -> "User":
        """
        Частично обновить пользователя и вернуть актуальную запись
        :raises NoFieldsToUpdateError: нет допустимых полей
        :raises UserNotFoundException: пользователь не найден
        """
        raise NotImplementedError

    @abstractmethod
    async def get_random_excluding(self, exclude_ids: Iterable[UUID]) -> Optional["User"]:
        """Случайный пользователь, чей id не входит в exclude_ids, либо None"""
        raise NotImplementedError

    @abstractmethod
    async def list(self, limit: int = 100, offset: int = 0) -> List["User"]:
        raise NotImplementedError


class AbstractDailyViewRepository(ABC):
    """Интерфейс журнала показов (Exposure Ledger)"""

    @abstractmethod
    async def record_view(self, view: "DailyView") -> bool:
        """
        Идемпотентно записать показ
        :returns True, если запись создана, False, если тройка уже существовала
        """
        raise NotImplementedError

    @abstractmethod
    async def get_shown_ids(self, viewer_id: UUID, view_date: date) -> Set[UUID]:
        """ID пользователей, показанных зрителю в указанный день"""
        raise NotImplementedError

    @abstractmethod
    async def get_first_shown(self, viewer_id: UUID, view_date: date) -> Optional["User"]:
        """Первый пользователь, показанный зрителю в указанный день"""
        raise NotImplementedError

    @abstractmethod
    async def cleanup_before(self, cutoff: date) -> int:
        """Удалить показы старше cutoff, вернуть количество удаленных"""
        raise NotImplementedError


class AbstractObjectStorage(ABC):
    """Интерфейс объектного хранилища для аватаров"""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Сохранить байты под ключом и вернуть публичный URL
        :raises StorageError: не удалось сохранить
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """:raises StorageError: не удалось удалить"""
        raise NotImplementedError

    @abstractmethod
    def key_from_url(self, url: str) -> Optional[str]:
        """Ключ объекта по его URL, None если URL не из этого хранилища"""
        raise NotImplementedError


class AbstractTokenService(ABC):
    """Выпуск и проверка токенов доступа"""

    @abstractmethod
    def issue(self, user_id: UUID) -> "Credential":
        raise NotImplementedError

    @abstractmethod
    def verify(self, token: str) -> UUID:
        """:raises InvalidCredentialError: токен подделан или истек"""
        raise NotImplementedError


class AbstractMetricsCollector(ABC):
    """ Интерфейс сборщика метрик """

    @abstractmethod
    async def record_auth_attempt(self, result: str, processing_time: float) -> None:
        """ Записать попытку входа: 'success' либо вид ошибки """
        pass

    @abstractmethod
    async def record_user_created(self) -> None:
        pass

    @abstractmethod
    async def record_daily_match(self, outcome: str, processing_time: float, excluded: int = 0) -> None:
        """ Записать выбор пары дня: matched, exhausted """
        pass

    @abstractmethod
    async def record_avatar_operation(self, operation: str, result: str) -> None:
        pass

    @abstractmethod
    async def record_error(self, error_type: str) -> None:
        """ Записать ошибку """
        pass

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        """ Получить метрики """
        pass


class AbstractRateLimiter(ABC):

    @abstractmethod
    async def is_allowed(self, key: str) -> bool:
        raise NotImplementedError


class AbstractUnitOfWork(ABC):
    """
    Граница одной транзакции хранилища. Экземпляр не разделяется между
    параллельными запросами: каждый запрос получает свой
    """

    def __init__(self):
        """ Дефолтные атрибуты """
        self.users: Optional[AbstractUserRepository] = None
        self.views: Optional[AbstractDailyViewRepository] = None
        self.committed = False

    async def __aenter__(self):
        self.committed = False
        return self

    async def __aexit__(self, *args):
        if not self.committed:
            await self.rollback()

    async def commit(self):
        await self._commit()
        self.committed = True

    async def rollback(self):
        await self._rollback()

    @abstractmethod
    async def _rollback(self):
        raise NotImplementedError

    @abstractmethod
    async def _commit(self):
        raise NotImplementedError
