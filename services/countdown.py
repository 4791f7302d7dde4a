import asyncio
from typing import Awaitable, Callable, Optional, Set

from core.config import settings
from core.exceptions import MockTestError, PersistenceError
from core.logger import logger
from services.task_manager import task_manager, running_task


class CountdownClock:
    """
    One repeating timer bound to one active session.

    Every tick decrements the remaining-seconds counter. When the counter
    hits a multiple of `autosave_every` an autosave is spawned as its own
    task, so a slow or failing write never delays the next tick. When the
    counter reaches zero `on_expire` is awaited.
    """

    def __init__(
        self,
        session_id: str,
        remaining_seconds: int,
        on_expire: Callable[[], Awaitable],
        on_autosave: Callable[[], Awaitable],
        tick_seconds: Optional[float] = None,
        autosave_every: Optional[int] = None,
    ):
        self.session_id = session_id
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.CLOCK_TICK_SECONDS
        self.autosave_every = autosave_every or settings.AUTOSAVE_EVERY_TICKS
        self._remaining = max(0, int(remaining_seconds))
        self._on_expire = on_expire
        self._on_autosave = on_autosave
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._cancelled = False
        self._task = asyncio.create_task(self._run(), name=f"mock-test-clock:{self.session_id}")
        task_manager.register_task(self.session_id, self._task)
        logger.debug("Clock started", session_id=self.session_id, remaining=self._remaining)

    def cancel(self):
        """Stop the clock. Safe to call any number of times, including from inside a tick."""
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        if task is not running_task():
            task.cancel()
        logger.debug("Clock cancelled", session_id=self.session_id, remaining=self._remaining)

    async def wait(self):
        """Wait for the clock task to finish (expired or cancelled)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def drain(self):
        """Wait for autosaves that are still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run(self):
        while self._remaining > 0:
            await asyncio.sleep(self.tick_seconds)
            self._remaining -= 1
            if self._remaining <= 0:
                break
            if self._remaining % self.autosave_every == 0:
                self._spawn_autosave()
        await self._expire()

    async def _expire(self):
        retry_delay = self.tick_seconds * self.autosave_every
        while not self._cancelled:
            try:
                await self._on_expire()
                return
            except PersistenceError as e:
                logger.error("Auto-submit failed, will retry", session_id=self.session_id, error=str(e))
                await asyncio.sleep(retry_delay)
            except MockTestError as e:
                # Already completed, paused or taken over elsewhere
                logger.info("Auto-submit skipped", session_id=self.session_id, reason=str(e))
                return

    def _spawn_autosave(self):
        task = asyncio.create_task(self._on_autosave())
        self._pending.add(task)
        task.add_done_callback(self._autosave_done)

    def _autosave_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Autosave task failed", session_id=self.session_id, error=str(error))


def format_clock(seconds: int) -> str:
    """Format seconds as HH:MM:SS."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
