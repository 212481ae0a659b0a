"""
Registry of in-flight generations, used for cancellation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Coroutine, TypeVar

from wellness_rag.exceptions import GenerationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GenerationHandle:
    """An in-flight generation."""
    generation_id: str
    task: asyncio.Task
    cancelled: bool = False


class GenerationRegistry:
    """
    Maps generation ids to their running provider calls.

    A generation is registered before its call starts and removed when the
    call completes, fails or is cancelled. Each provider owns its own
    registry.
    """

    def __init__(self):
        self._active: dict[str, GenerationHandle] = {}

    async def run(self, generation_id: str, coro: Coroutine[Any, Any, T]) -> T:
        """
        Run a provider call under a generation id.

        Args:
            generation_id: Caller-chosen id, unique among active generations
            coro: The provider call

        Returns:
            The result of the call

        Raises:
            ValueError: If the id is already active
            GenerationCancelledError: If ``cancel`` was called for the id
        """
        if generation_id in self._active:
            coro.close()
            raise ValueError(f"Generation '{generation_id}' is already active")

        task = asyncio.ensure_future(coro)
        handle = GenerationHandle(generation_id=generation_id, task=task)
        self._active[generation_id] = handle
        logger.info(f"Generation {generation_id} started")

        try:
            return await task
        except asyncio.CancelledError:
            if handle.cancelled:
                logger.info(f"Generation {generation_id} was cancelled")
                raise GenerationCancelledError(generation_id) from None
            raise
        finally:
            if self._active.get(generation_id) is handle:
                del self._active[generation_id]

    def cancel(self, generation_id: str) -> bool:
        """
        Cancel an active generation.

        Returns:
            True if a generation was cancelled, False if none was active or
            its call had already finished
        """
        handle = self._active.get(generation_id)
        if handle is None:
            logger.warning(f"No active generation found for ID: {generation_id}")
            return False
        if handle.task.done():
            logger.info(f"Generation {generation_id} already finished, not cancelled")
            return False

        del self._active[generation_id]
        handle.cancelled = True
        handle.task.cancel()
        logger.info(f"Successfully cancelled generation: {generation_id}")
        return True

    def is_active(self, generation_id: str) -> bool:
        return generation_id in self._active

    def active_ids(self) -> list[str]:
        return list(self._active)

    def __len__(self) -> int:
        return len(self._active)
