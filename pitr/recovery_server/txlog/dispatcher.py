"""
Fire-and-forget dispatch of transaction log writes.

Mutations record their log entry after their own result is decided. The
write is scheduled as a task and never awaited by the caller, so a slow or
failing log write never delays or fails the mutation.

Invariants:
    - fire_and_forget() never raises to its caller
    - Exceptions inside scheduled work are logged, never propagated
    - Tasks are referenced until done, so they are not garbage collected
      mid-flight

How to change safely:
    - Every call site must go through fire_and_forget(); do not create bare
      tasks for audit writes
    - Ordering between logically sequential submissions is best effort
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from typing import Any, TypeVar

from .store import LogEntry, Operation, TransactionLogStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _swallow_errors(coro: Coroutine[Any, Any, Any], description: str) -> None:
    try:
        await coro
    except Exception as e:
        logger.error(f"Background task failed: {description}: {e}", exc_info=True)


def fire_and_forget(
    coro: Coroutine[Any, Any, Any],
    description: str,
    tasks: set[asyncio.Task] | None = None,
) -> asyncio.Task | None:
    """Schedule a coroutine without awaiting it.

    Args:
        coro: Work to run in the background
        description: Used in log messages if the work fails
        tasks: Optional set that holds the task until it completes

    Returns:
        The scheduled task, or None if no event loop is running
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.warning(f"No running event loop, dropped background task: {description}")
        return None

    task = loop.create_task(_swallow_errors(coro, description))
    if tasks is not None:
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    return task


class LogDispatcher:
    """Submits log entries to the store in the background.

    Example:
        >>> dispatcher = LogDispatcher(log_store)
        >>> dispatcher.submit(LogEntry(table="orders", operation=Operation.CREATE))
        >>> await dispatcher.drain()  # tests, shutdown, before a restore
    """

    def __init__(self, store: TransactionLogStore) -> None:
        self.store = store
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, entry: LogEntry) -> None:
        fire_and_forget(
            self.store.append(entry),
            f"transaction log append ({entry.table})",
            self._pending,
        )

    def submit_batch(self, entries: Iterable[LogEntry]) -> None:
        fire_and_forget(
            self.store.append_batch(list(entries)),
            "transaction log batch append",
            self._pending,
        )

    async def drain(self) -> None:
        """Wait for every submitted write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def with_logging(
    dispatcher: LogDispatcher,
    operation: Callable[[], Awaitable[T]],
    *,
    table: str,
    kind: Operation,
    record_id: int | None = None,
    user_id: int | None = None,
    get_before: Callable[[], Awaitable[Any]] | None = None,
    get_after: Callable[[T], Any] | None = None,
    recovery_point_id: int | None = None,
) -> T:
    """Run a mutation and record it in the transaction log.

    The before-image is captured for update/delete, the after-image for
    create/update. Errors from `operation` propagate unchanged and nothing
    is logged; errors while capturing images only produce warnings.

    Args:
        dispatcher: Where the entry is submitted
        operation: The mutation itself
        table: Mutated table
        kind: create, update or delete
        record_id: Mutated row id
        user_id: Acting user
        get_before: Loads the row before the mutation
        get_after: Derives the row state from the mutation's result
        recovery_point_id: Pin the entry to a recovery point

    Returns:
        Whatever `operation` returned
    """
    kind = Operation(kind)

    before = None
    if kind in (Operation.UPDATE, Operation.DELETE) and get_before is not None:
        try:
            before = await get_before()
        except Exception as e:
            logger.warning(f"Failed to get old data for transaction log: {e}")

    result = await operation()

    after = None
    if kind in (Operation.CREATE, Operation.UPDATE) and get_after is not None:
        try:
            after = get_after(result)
        except Exception as e:
            logger.warning(f"Failed to get new data for transaction log: {e}")

    dispatcher.submit(
        LogEntry(
            table=table,
            operation=kind,
            record_id=record_id,
            user_id=user_id,
            before_image=before,
            after_image=after,
            recovery_point_id=recovery_point_id,
        )
    )
    return result
