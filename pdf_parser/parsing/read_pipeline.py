from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

ReadCallback = Callable[[Optional[OSError], Optional[bytes]], None]
Reader = Callable[[str], bytes]


def read_file_bytes(path: str) -> bytes:
    return Path(path).read_bytes()


@dataclass
class ReadTask:
    path: str
    callback: ReadCallback


class ReadPipeline:
    """
    Per-parser file reader with a concurrency of one.

    Tasks run strictly in submission order and only one disk read is in
    flight at a time. The blocking read runs in the loop's default executor;
    the callback is invoked on the event loop thread with ``(error, data)``.
    Disk errors are handed to the callback as raised; nothing is retried.
    """

    def __init__(self, reader: Reader = read_file_bytes):
        self.reader = reader
        self._queue: Deque[ReadTask] = deque()
        self._drain_task: Optional[asyncio.Task] = None

    def push(self, path: str, callback: ReadCallback) -> None:
        loop = asyncio.get_running_loop()
        self._queue.append(ReadTask(path=str(path), callback=callback))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queue:
            task = self._queue.popleft()
            try:
                data = await loop.run_in_executor(None, self.reader, task.path)
            except OSError as exc:
                logger.debug("read failed for %s: %s", task.path, exc)
                task.callback(exc, None)
            else:
                task.callback(None, data)

    def close(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self._queue.clear()
