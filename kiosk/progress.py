"""
progress.py - Progress Events

Workflows run on a worker thread and report progress one way: they put
ProgressEvent objects on a ProgressChannel, and whoever observes (a UI, the
CLI, a log sink) drains it on its own thread.  The core never touches
observer state.
"""

import queue
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    detail: dict = field(default_factory=dict)


class ProgressChannel:
    """Thread-safe, unbounded, one-way queue of ProgressEvent."""

    def __init__(self):
        self._queue = queue.Queue()

    def emit(self, stage: str, message: str, **detail):
        self._queue.put(ProgressEvent(stage, message, detail))

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> Iterator[ProgressEvent]:
        """Yield every event queued so far without blocking."""
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return


class NullChannel(ProgressChannel):
    """Channel that discards events; used when nobody observes."""

    def emit(self, stage: str, message: str, **detail):
        logger.debug(f"[{stage}] {message}")


class Worker:
    """Dedicated thread for blocking workflow runs."""

    def __init__(self):
        # One thread: the reader is exclusive, so workflows never overlap anyway
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kiosk-worker")

    def submit(self, fn, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()


def follow(future: Future, channel: ProgressChannel, on_event, poll: float = 0.1):
    """
    Deliver events to *on_event* on the calling thread until *future* is done,
    then return its result.
    """
    while not future.done():
        event = channel.get(timeout=poll)
        if event is not None:
            on_event(event)
    for event in channel.drain():
        on_event(event)
    return future.result()
