import asyncio

from daily_match.application.interfaces import AbstractUnitOfWork
from daily_match.application.use_cases import CleanupDailyViewsUseCase
from daily_match.config import config
from daily_match.container import ServiceContainer, get_container
from daily_match.logconfig import opt_logger as log

logger = log.setup_logger(name='retention')


async def retention_sweep(container: ServiceContainer = None, interval: float = None):
    """
    Периодически удаляет старую историю показов.
    Ошибка одного прохода не останавливает цикл
    """
    interval = interval or config.retention.sweep_interval
    container = container or await get_container()

    while True:
        try:
            use_case = await container.get(CleanupDailyViewsUseCase)
            uow = await container.get(AbstractUnitOfWork)
            deleted = await use_case.execute(uow)
            logger.info(f"Retention sweep removed {deleted} daily views")
        except Exception:
            logger.exception("Retention sweep failed")

        await asyncio.sleep(interval)


async def stop_task(task: asyncio.Task):
    """ Остановить фоновую задачу, не пропуская ее ошибку наружу """
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"Background task {task.get_name()} stopped")
    except Exception:
        logger.exception(f"Background task {task.get_name()} failed")
