import time
from typing import Dict, Any

from prometheus_client import Counter, Histogram, CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from redis.asyncio import Redis
from redis.exceptions import RedisError

from daily_match.application.interfaces import AbstractMetricsCollector, AbstractRateLimiter
from daily_match.config import config
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='services')


class RedisRateLimiter(AbstractRateLimiter):
    """
    Ограничитель частоты запросов с фиксированным окном в Redis.
    Счетчик общий для всех процессов сервиса
    """

    def __init__(self, r_client: Redis = None, max_requests: int = None, window_seconds: int = None):
        self.redis = r_client
        self.max_requests = max_requests or config.rate_limit.max_requests
        self.window_seconds = window_seconds or config.rate_limit.window_seconds

    async def is_allowed(self, key: str) -> bool:
        """
        Проверяет, разрешен ли запрос для данного ключа
        :param key: Идентификатор клиента (user id, ip)
        :returns True если запрос разрешен, False если превышен лимит
        """
        if self.redis is None:
            # Без Redis ограничение отключено
            return True

        window = int(time.time() // self.window_seconds)
        redis_key = f"rate:{key}:{window}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                count, _ = await pipe.incr(redis_key).expire(redis_key, self.window_seconds).execute()
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True

        return int(count) <= self.max_requests


class PrometheusMetricsCollector(AbstractMetricsCollector):
    """
    Сборщик метрик для Prometheus: входы, выбор пары дня, аватары, ошибки
    """

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """ Инициализировать все метрики """

        self.auth_attempts_total = Counter(
            'auth_attempts_total',
            'Total number of Telegram authentication attempts',
            ['result'],
            registry=self.registry
        )

        self.auth_processing_time = Histogram(
            'auth_processing_time_seconds',
            'Time spent authenticating Telegram users',
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self.registry
        )

        self.users_created_total = Counter(
            'users_created_total',
            'Total number of users created on first login',
            registry=self.registry
        )

        self.daily_matches_total = Counter(
            'daily_matches_total',
            'Daily match selections by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.daily_match_processing_time = Histogram(
            'daily_match_processing_time_seconds',
            'Time spent selecting a daily match',
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self.registry
        )

        self.excluded_users = Histogram(
            'daily_match_excluded_users',
            'Size of the exclusion set per selection',
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
            registry=self.registry
        )

        self.avatar_operations_total = Counter(
            'avatar_operations_total',
            'Avatar uploads and deletions',
            ['operation', 'result'],
            registry=self.registry
        )

        self.errors_total = Counter(
            'service_errors_total',
            'Total number of errors by type',
            ['error_type'],
            registry=self.registry
        )

    async def record_auth_attempt(self, result: str, processing_time: float) -> None:
        try:
            self.auth_attempts_total.labels(result=result).inc()
            self.auth_processing_time.observe(processing_time)
        except Exception as e:
            logger.error(f"Error recording auth metrics: {e}")

    async def record_user_created(self) -> None:
        self.users_created_total.inc()

    async def record_daily_match(self, outcome: str, processing_time: float, excluded: int = 0) -> None:
        """
        Записать выбор пары дня
        :param outcome: matched, degraded, exhausted
        :param processing_time: Время обработки в секундах
        :param excluded: Размер множества исключений
        """
        try:
            self.daily_matches_total.labels(outcome=outcome).inc()
            self.daily_match_processing_time.observe(processing_time)
            self.excluded_users.observe(excluded)
        except Exception as e:
            logger.error(f"Error recording daily match metrics: {e}")

    async def record_avatar_operation(self, operation: str, result: str) -> None:
        self.avatar_operations_total.labels(operation=operation, result=result).inc()

    async def record_error(self, error_type: str) -> None:
        self.errors_total.labels(error_type=error_type).inc()

    async def get_metrics(self) -> Dict[str, Any]:
        return {
            'prometheus_metrics': generate_latest(self.registry).decode('utf-8'),
            'content_type': CONTENT_TYPE_LATEST,
            'timestamp': time.time()
        }
