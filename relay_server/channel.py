# relay_server/channel.py

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

_CLOSE = object()


class OutboundChannel:
    """
    Buffered, non-blocking writer in front of one client's StreamWriter.

    ``send`` only enqueues; a dedicated task drains the queue to the socket.
    When the queue is full the frame is dropped, so a slow peer can never
    stall whoever is sending to it.
    """

    def __init__(self, writer: asyncio.StreamWriter, maxsize: int = 256, name: str = "?"):
        self.writer = writer
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closing

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain_loop())

    def send(self, line: str) -> bool:
        """
        Queue one frame for delivery. Returns False if it was dropped.
        """
        if self._closing:
            return False
        try:
            self._queue.put_nowait(line)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Outbox for %s is full; dropping frame.", self.name)
            return False
        return True

    async def _drain_loop(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            try:
                self.writer.write((item + "\n").encode("utf-8"))
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                logger.info("Write to %s failed: %s", self.name, e)
                self._closing = True
                return

    async def close(self, timeout: float = 5.0) -> None:
        """
        Flush what is already queued, then stop the writer task.
        Frames sent after this call are discarded. A peer that does not
        take the backlog within ``timeout`` seconds loses it.
        """
        self._closing = True
        if self._task is None or self._task.done():
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            await asyncio.wait_for(self._queue.put(_CLOSE), timeout)
            await asyncio.wait_for(self._task, max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            logger.warning("Gave up flushing outbox for %s.", self.name)
            self._task.cancel()
