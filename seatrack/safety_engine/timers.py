"""SeaTrack - Cancellable asyncio timers used by the watchers."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger("seatrack.timers")

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


class RepeatingTimer:
    """Runs ``callback`` every ``interval_ms`` until cancelled.

    The callback may be a plain function or a coroutine function. A failing
    callback is logged and the timer keeps running. Must be started from
    inside a running event loop.
    """

    def __init__(self, name: str, interval_ms: float, callback: TimerCallback, *, immediate: bool = False):
        self.name = name
        self.interval_ms = interval_ms
        self._callback = callback
        self._immediate = immediate
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"timer:{self.name}")
        logger.debug("[%s] timer started (interval=%dms)", self.name, self.interval_ms)

    def cancel(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        # A callback may cancel its own timer; don't cancel the task from inside itself.
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug("[%s] timer cancelled", self.name)

    async def _run(self):
        if not self._immediate:
            await asyncio.sleep(self.interval_ms / 1000)
        while True:
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("[%s] timer callback error: %s", self.name, e)
            if self._task is not asyncio.current_task():
                # Cancelled from inside the callback
                return
            await asyncio.sleep(self.interval_ms / 1000)


class TaskGroup:
    """Tracks fire-and-forget tasks so they can be cancelled on teardown."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, label: str = "") -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro, name=f"{self.name}:{label}" if label else None)
        self._tasks.add(task)
        task.add_done_callback(self._done)
        return task

    def _done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] background task %s failed: %s", self.name, task.get_name(), exc)

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self):
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
