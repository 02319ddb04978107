"""Bounded worker pool for detached ingestion runs."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from uuid import UUID

from backend.app.config import get_settings
from backend.app.errors import InProgressError

logger = logging.getLogger(__name__)


class IngestionDispatcher:
    """Runs ingestion coroutines as tracked background tasks.

    At most ``max_workers`` runs execute at once; the rest wait on a
    semaphore. Every task is referenced until it finishes, and any exception
    escaping a run is logged from the done callback.
    """

    def __init__(self, max_workers: int = 4) -> None:
        if max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self.max_workers = max_workers
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: dict[UUID, asyncio.Task[None]] = {}

    def is_active(self, document_id: UUID) -> bool:
        """Return True while a run for document_id is queued or executing."""
        return document_id in self._tasks

    @property
    def active_count(self) -> int:
        """Number of queued or executing runs."""
        return len(self._tasks)

    def dispatch(
        self, document_id: UUID, run: Callable[[], Awaitable[None]]
    ) -> asyncio.Task[None]:
        """Schedule run() for document_id and return immediately.

        Raises:
            InProgressError: If a run for this document is already tracked
        """
        if self.is_active(document_id):
            raise InProgressError(document_id)

        task = asyncio.create_task(self._guarded(run), name=f"ingest-{document_id}")
        self._tasks[document_id] = task
        task.add_done_callback(partial(self._on_done, document_id))
        return task

    async def _guarded(self, run: Callable[[], Awaitable[None]]) -> None:
        async with self._semaphore:
            await run()

    def _on_done(self, document_id: UUID, task: asyncio.Task[None]) -> None:
        self._tasks.pop(document_id, None)

        if task.cancelled():
            logger.warning(f"Ingestion task for document {document_id} was cancelled")
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Ingestion task for document {document_id} crashed",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait for every tracked run to finish (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)


_dispatcher: IngestionDispatcher | None = None


def get_dispatcher() -> IngestionDispatcher:
    """Get global dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = IngestionDispatcher(max_workers=get_settings().ingestion_max_workers)
    return _dispatcher
