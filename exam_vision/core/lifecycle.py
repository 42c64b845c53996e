import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from exam_vision.core.errors import ModelUnavailableError

logger = logging.getLogger(__name__)


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class EngineLifecycle:
    """
    Initialization state of one engine instance.

    Concurrent ``ensure()`` callers share a single in-flight attempt. The
    in-flight task is checked and stored without awaiting in between, so the
    swap is atomic on the event loop.

    ``reset()`` starts a new generation: the in-flight attempt is cancelled and
    an attempt of an older generation never changes the state again.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = InitState.UNINITIALIZED
        self._inflight: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def is_ready(self) -> bool:
        return self.state is InitState.READY

    async def ensure(self, attempt: Callable[[], Awaitable[None]]) -> None:
        if self.state is InitState.READY:
            return

        generation = self._generation
        if self._inflight is None:
            self.state = InitState.INITIALIZING
            self._inflight = asyncio.ensure_future(self._run(attempt, generation))
        else:
            logger.debug(f"{self.name}: joining in-flight initialization")

        task = self._inflight
        try:
            # A cancelled waiter must not cancel the attempt other waiters share
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and generation != self._generation:
                logger.info(f"{self.name}: initialization abandoned by reset")
                return
            raise

    async def _run(self, attempt: Callable[[], Awaitable[None]], generation: int) -> None:
        try:
            await attempt()
        except ModelUnavailableError:
            self._settle(generation, InitState.UNINITIALIZED)
            raise
        except BaseException:
            self._settle(generation, InitState.FAILED)
            raise

        if self._settle(generation, InitState.READY):
            logger.info(f"{self.name} ready")

    def _settle(self, generation: int, state: InitState) -> bool:
        if generation != self._generation:
            return False
        self.state = state
        self._inflight = None
        return True

    def reset(self) -> None:
        self._generation += 1
        if self._inflight is not None:
            self._inflight.cancel()
        self.state = InitState.UNINITIALIZED
        self._inflight = None
