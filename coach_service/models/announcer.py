"""
POSECOACH Coach Service - Announcement Queue

Serialized, fire-and-forget speech requests. The session core calls
speak()/stop_all() synchronously; a background task hands one text at a time
to a sink (e.g. a websocket client that does the actual text-to-speech).
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Protocol

from core.config import settings

logger = logging.getLogger(__name__)


class AnnouncementSink(Protocol):
    """Delivers announcements to the speech output."""

    async def deliver(self, text: str) -> None: ...

    async def silence(self) -> None: ...


class AnnouncementQueue:
    """
    Strictly ordered announcement queue.

    - speak() never blocks and never waits for delivery
    - one text is delivered at a time, followed by a short gap
    - stop_all() drops everything not yet delivered and silences the sink
    """

    def __init__(self, sink: AnnouncementSink, gap_seconds: Optional[float] = None):
        self.sink = sink
        self.gap_seconds = settings.ANNOUNCEMENT_GAP_SECONDS if gap_seconds is None else gap_seconds

        self._pending: Deque[str] = deque()
        self._wakeup: Optional[asyncio.Event] = None
        self._silence_requested = False
        self._worker: Optional[asyncio.Task] = None
        self._delivered_count = 0
        self._dropped_count = 0

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        """Start the delivery task on the running event loop."""
        if self.is_running:
            return
        self._wakeup = asyncio.Event()
        if self._pending or self._silence_requested:
            self._wakeup.set()
        self._worker = asyncio.get_running_loop().create_task(self._run())
        logger.debug("🔊 Announcement queue started")

    async def close(self):
        """Stop the delivery task; undelivered texts are dropped."""
        self._dropped_count += len(self._pending)
        self._pending.clear()
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def speak(self, text: str):
        """Queue text for delivery."""
        if not text:
            logger.debug("Ignoring empty announcement")
            return
        self._pending.append(text)
        if self._wakeup:
            self._wakeup.set()

    def stop_all(self):
        """Discard queued texts and ask the sink to stop talking."""
        if self._pending:
            logger.debug(f"🔇 Dropping {len(self._pending)} queued announcement(s)")
        self._dropped_count += len(self._pending)
        self._pending.clear()
        self._silence_requested = True
        if self._wakeup:
            self._wakeup.set()

    async def _run(self):
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            while self._silence_requested or self._pending:
                if self._silence_requested:
                    self._silence_requested = False
                    await self._call_sink(self.sink.silence)
                    continue

                text = self._pending.popleft()
                await self._call_sink(self.sink.deliver, text)
                self._delivered_count += 1
                if self.gap_seconds > 0:
                    await asyncio.sleep(self.gap_seconds)

    async def _call_sink(self, method, *args):
        try:
            await method(*args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A failing speech output must not stop later announcements
            logger.error(f"Announcement sink error: {type(e).__name__}: {e}")

    def get_stats(self) -> dict:
        return {
            "pending": len(self._pending),
            "delivered": self._delivered_count,
            "dropped": self._dropped_count,
            "running": self.is_running,
        }
