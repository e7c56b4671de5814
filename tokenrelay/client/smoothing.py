"""
tokenrelay - Smooth Rendering

A sink that sits between the reader and a display sink and releases
buffered text in small, evenly timed slices instead of in network-sized
bursts. It only consumes fragments; decoding is untouched.

Usage:
    display = TextSink()
    smoothing = SmoothingSink(display, interval=0.016, chars_per_tick=3)
    reader = ClientStreamReader(client, transport, smoothing)
"""

import asyncio
from typing import Optional

from .sinks import StreamSink


class SmoothingSink:
    """
    Buffers fragments and forwards them to `target` on a timer.

    Terminal events flush whatever is still queued first, so the target
    always ends with the full text in order.

    Args:
        target: Sink that renders the text
        interval: Seconds between flushes
        chars_per_tick: Characters released per flush
    """

    def __init__(self, target: StreamSink, interval: float = 0.016, chars_per_tick: int = 3):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if chars_per_tick < 1:
            raise ValueError("chars_per_tick must be at least 1")
        self.target = target
        self.interval = interval
        self.chars_per_tick = chars_per_tick
        self.queue = ""
        self._first_sent = False
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return len(self.queue)

    def on_start(self) -> None:
        self.queue = ""
        self._first_sent = False
        self.target.on_start()

    def on_first_fragment(self) -> None:
        # Forwarded with the first released slice instead
        pass

    def on_fragment(self, text: str) -> None:
        self.queue += text
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def on_complete(self) -> None:
        self.flush()
        self.target.on_complete()

    def on_abort(self) -> None:
        self.flush()
        self.target.on_abort()

    def on_error(self, reason: str) -> None:
        self.flush()
        self.target.on_error(reason)

    def flush(self) -> None:
        """Release everything queued at once and stop the timer."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.queue:
            self._release(self.queue)
            self.queue = ""

    async def wait_drained(self) -> None:
        """Wait until the timer has released the whole queue."""
        while self._task is not None and not self._task.done():
            await asyncio.sleep(self.interval)

    async def _drain(self) -> None:
        while self.queue:
            piece = self.queue[:self.chars_per_tick]
            self.queue = self.queue[self.chars_per_tick:]
            self._release(piece)
            await asyncio.sleep(self.interval)

    def _release(self, text: str) -> None:
        if not self._first_sent:
            self._first_sent = True
            self.target.on_first_fragment()
        self.target.on_fragment(text)
