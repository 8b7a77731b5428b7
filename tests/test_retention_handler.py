import asyncio

import pytest

from daily_match.application.use_cases import CleanupDailyViewsUseCase
from daily_match.handlers.retention_handler import retention_sweep, stop_task


class FlakyCleanup:
    """ Очистка, которая падает на первых проходах """

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def execute(self, uow, days_to_keep=None):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return 0


async def _wait_for_calls(cleanup: FlakyCleanup, count: int):
    for _ in range(200):
        if cleanup.calls >= count:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_sweep_survives_unexpected_errors(container):
    """ Ошибка прохода логируется, следующий проход выполняется """
    cleanup = FlakyCleanup(OSError("connection refused"), ValueError("days_to_keep must be >= 1"))
    container.register_instance(CleanupDailyViewsUseCase, cleanup)

    task = asyncio.create_task(retention_sweep(container, interval=0.01))
    await _wait_for_calls(cleanup, 3)

    assert cleanup.calls >= 3
    assert not task.done()
    await stop_task(task)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_sweep_removes_old_views(container):
    cleanup = FlakyCleanup()
    container.register_instance(CleanupDailyViewsUseCase, cleanup)

    task = asyncio.create_task(retention_sweep(container, interval=0.01))
    await _wait_for_calls(cleanup, 1)
    await stop_task(task)

    assert cleanup.calls >= 1


@pytest.mark.asyncio
async def test_stop_task_swallows_task_failure():
    """ Упавшая задача не мешает остановке остальных ресурсов """

    async def broken():
        raise OSError("connection refused")

    task = asyncio.create_task(broken(), name='broken')
    await asyncio.sleep(0)
    await stop_task(task)

    assert isinstance(task.exception(), OSError)
