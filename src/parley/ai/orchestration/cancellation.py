"""Per-session handle for aborting the in-flight model request."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from ...errors import TurnCancelledError

__all__ = ["CancellationController"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationController:
    """Tracks one active turn and the task currently talking to the model.

    ``begin``/``end`` bracket a turn. Work routed through :meth:`run` executes
    in its own task so :meth:`cancel` can abort the transport operation
    without cancelling the caller.
    """

    def __init__(self) -> None:
        self._active = False
        self._cancelled = False
        self._task: asyncio.Task[Any] | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def begin(self) -> None:
        if self._active:
            raise RuntimeError("A turn is already in progress")
        self._active = True
        self._cancelled = False

    def end(self) -> None:
        self._active = False
        self._task = None

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TurnCancelledError()

    async def run(self, operation: Awaitable[T]) -> T:
        """Await ``operation`` as a cancellable task.

        Raises:
            TurnCancelledError: If :meth:`cancel` fired before or during the await.
        """
        task = asyncio.ensure_future(operation)
        if self._cancelled:
            task.cancel()
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled and task.cancelled():
                raise TurnCancelledError() from None
            raise
        finally:
            self._task = None

    def cancel(self) -> bool:
        """Request cancellation; idempotent and a no-op when no turn is active."""
        if not self._active or self._cancelled:
            return False
        self._cancelled = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        LOGGER.info("Cancellation requested for the active turn")
        return True
