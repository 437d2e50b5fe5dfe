import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 300


class QueryDebouncer:
    """Forward query text to ``submit`` once typing pauses for ``delay_ms``.

    Each ``push`` cancels the pending timer, so only the last text of a burst
    is submitted. A submit that is already running is not cancelled.
    """

    def __init__(
        self,
        submit: Callable[[str], Awaitable[object]],
        delay_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self._submit = submit
        self.delay_ms = delay_ms
        self._timer: Optional["asyncio.Task[None]"] = None
        self._pending_text: Optional[str] = None
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def push(self, text: str) -> None:
        self.cancel()
        self._pending_text = text
        self._timer = asyncio.get_running_loop().create_task(self._fire_later(text))
        self._tasks.add(self._timer)
        self._timer.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._pending_text = None

    async def flush(self) -> None:
        """Submit the pending text now instead of waiting for the timer."""
        text = self._pending_text
        if text is None:
            return
        self.cancel()
        await self._run(text)

    async def _fire_later(self, text: str) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        # detach so a later push() no longer cancels this submit
        self._timer = None
        self._pending_text = None
        await self._run(text)

    async def _run(self, text: str) -> None:
        try:
            await self._submit(text)
        except Exception:
            logger.exception("query %r failed", text)

    async def wait(self) -> None:
        """Wait for the pending timer and any submit it started."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
