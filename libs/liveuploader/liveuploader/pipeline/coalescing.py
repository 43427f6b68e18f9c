"""Background writer that always persists the newest payload.

Used for objects rewritten far more often than they can be durably flushed
(e.g. a live playlist). Producers call `enqueue()` without blocking; one
consumer task drains the queue to its newest item before every attempt, so
older unflushed payloads are superseded rather than written.
"""

from __future__ import annotations

import asyncio
import io
import logging

from liveuploader.config import RetryConfig
from liveuploader.exceptions import TransientStorageError
from liveuploader.storage.base import FileProperties, StorageSession

logger = logging.getLogger(__name__)

TIMEOUT_MULTIPLIER = 1.5
DEFAULT_QUEUE_SIZE = 32

_STOP = object()


class CoalescingWriter:
    def __init__(
        self,
        session: StorageSession,
        name: str = "",
        *,
        desc: str = "",
        max_retries: int = 3,
        initial_timeout_s: float = 10.0,
        max_timeout_s: float = 60.0,
        retry_wait_s: float = 0.5,
        max_retry_wait_s: float = 10.0,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        properties: FileProperties | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries should be greater than zero")
        self.session = session
        self.name = name
        self.desc = desc or name or session.base_key
        self.max_retries = int(max_retries)
        self.initial_timeout_s = float(initial_timeout_s)
        self.max_timeout_s = float(max_timeout_s)
        self.retry_wait_s = float(retry_wait_s)
        self.max_retry_wait_s = float(max_retry_wait_s)
        self.properties = properties

        self.last_saved: bytes | None = None
        self.saves = 0
        self.consecutive_failures = 0
        self.last_error: BaseException | None = None

        self.queue_size = max(1, int(queue_size))
        # One extra slot so the stop marker always fits.
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=self.queue_size + 1)
        self._stopping = False
        self._stop_seen = False
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        session: StorageSession,
        name: str = "",
        *,
        config: RetryConfig,
        desc: str = "",
        properties: FileProperties | None = None,
    ) -> "CoalescingWriter":
        return cls(
            session,
            name,
            desc=desc,
            max_retries=config.overwrite_max_retries,
            initial_timeout_s=config.overwrite_initial_timeout_s,
            max_timeout_s=config.overwrite_max_timeout_s,
            queue_size=config.overwrite_queue_size,
            properties=properties,
        )

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._worker_loop(), name=f"coalescing-writer:{self.desc}")

    def enqueue(self, data: bytes) -> None:
        """Queue `data` for saving; never blocks."""
        if self._stopping:
            raise RuntimeError(f"writer for {self.desc} is stopped")
        if self._task is not None and self._task.done():
            raise RuntimeError(f"writer for {self.desc} is no longer running")
        self.start()
        while self._queue.qsize() >= self.queue_size:
            # Oldest entry is superseded by anything newer.
            self._queue.get_nowait()
        self._queue.put_nowait(bytes(data))

    async def stop(self) -> None:
        """Stop the consumer after it has made an attempt at the newest payload.

        Everything enqueued before `stop()` is considered; the newest of it
        gets at least one save attempt before this returns.
        """
        if self._stopping:
            if self._task is not None:
                await self._task
            return
        self._stopping = True
        if self._task is None:
            return
        self._queue.put_nowait(_STOP)
        await self._task

    async def _worker_loop(self) -> None:
        while not self._stop_seen:
            item = await self._queue.get()
            if item is _STOP:
                return
            await self._save_latest(item)  # type: ignore[arg-type]

    def _latest(self, current: bytes) -> bytes:
        res = current
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return res
            if item is _STOP:
                self._stop_seen = True
                continue
            res = item  # type: ignore[assignment]

    async def _save_latest(self, data: bytes) -> None:
        timeout = self.initial_timeout_s
        for attempt in range(1, self.max_retries + 1):
            # Only the last payload matters.
            data = self._latest(data)
            try:
                await self.session.save(self.name, io.BytesIO(data), self.properties, timeout)
            except TransientStorageError as exc:
                self.consecutive_failures += 1
                self.last_error = exc
                logger.warning(
                    "coalesced save failed (desc=%s, attempt=%d, timeout_s=%.1f, error=%s)",
                    self.desc,
                    attempt,
                    timeout,
                    exc,
                )
                timeout = min(timeout * TIMEOUT_MULTIPLIER, self.max_timeout_s)
                if attempt < self.max_retries:
                    await asyncio.sleep(self._backoff())
                continue
            except Exception as exc:
                # Not retryable for this payload; the consumer keeps serving newer ones.
                self.consecutive_failures += 1
                self.last_error = exc
                logger.error(
                    "coalesced save failed, not retrying (desc=%s, bytes=%d, error=%r)", self.desc, len(data), exc
                )
                return
            self.consecutive_failures = 0
            self.last_error = None
            self.last_saved = data
            self.saves += 1
            logger.debug("coalesced save ok (desc=%s, bytes=%d)", self.desc, len(data))
            return
        logger.error(
            "coalesced save gave up (desc=%s, retries=%d, bytes=%d)", self.desc, self.max_retries, len(data)
        )

    def _backoff(self) -> float:
        wait = self.retry_wait_s * TIMEOUT_MULTIPLIER ** max(0, self.consecutive_failures - 1)
        return min(wait, self.max_retry_wait_s)
