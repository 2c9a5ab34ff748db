"""Per-connection bounded outbound queue.

Fan-out never awaits a socket directly: frames are appended to the target
connection's outbox and a dedicated writer task drains it in FIFO order. A
slow consumer therefore only fills its own queue. When the queue is full the
configured overflow policy applies:

    - ``drop_oldest``: discard the oldest queued frame and keep going
    - ``disconnect``: stop accepting frames and ask the owner to close the socket
"""
import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

DROP_OLDEST = "drop_oldest"
DISCONNECT = "disconnect"


class Outbox:
    """FIFO of outbound frames for one connection, drained by a writer task.

    Attributes:
        name: Label used in log lines (usually the connection id).
        dropped: Number of frames discarded by the drop-oldest policy.
        overflowed: True once the disconnect policy has been triggered.
    """

    def __init__(
        self,
        send: Callable[[dict], Awaitable[None]],
        *,
        maxsize: int = 256,
        overflow_policy: str = DROP_OLDEST,
        on_overflow: Optional[Callable[[], None]] = None,
        name: str = "",
    ) -> None:
        if overflow_policy not in (DROP_OLDEST, DISCONNECT):
            raise ValueError(f"Unknown overflow policy: {overflow_policy}")
        self.name = name
        self.dropped = 0
        self.overflowed = False
        self._send = send
        self._maxsize = maxsize
        self._policy = overflow_policy
        self._on_overflow = on_overflow
        self._queue: Deque[dict] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._queue)

    def start(self) -> None:
        """Start the writer task on the running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._drain(), name=f"outbox-{self.name}")

    def put(self, frame: dict) -> bool:
        """Queue *frame* for delivery.

        Returns:
            False if the frame was not queued (outbox closed or overflowed).
        """
        if self._closed:
            return False

        if len(self._queue) >= self._maxsize:
            if self._policy == DISCONNECT:
                logger.warning("[Outbox] %s overflowed (%d frames); disconnecting", self.name, self._maxsize)
                self.overflowed = True
                self._closed = True
                self._queue.clear()
                self._wakeup.set()
                if self._on_overflow is not None:
                    self._on_overflow()
                return False
            self._queue.popleft()
            self.dropped += 1
            logger.debug("[Outbox] %s full, dropped oldest frame (%d dropped)", self.name, self.dropped)

        self._queue.append(frame)
        self._wakeup.set()
        return True

    async def _drain(self) -> None:
        while True:
            while self._queue:
                frame = self._queue.popleft()
                try:
                    await self._send(frame)
                except Exception as e:
                    # The receive loop notices the dead socket and unregisters it.
                    logger.debug("[Outbox] Send to %s failed: %s", self.name, e)
                    self._closed = True
                    self._queue.clear()
                    return
            if self._closed:
                return
            self._wakeup.clear()
            await self._wakeup.wait()

    async def close(self) -> None:
        """Stop accepting frames and stop the writer task. Pending frames are discarded."""
        self._closed = True
        self._queue.clear()
        self._wakeup.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
