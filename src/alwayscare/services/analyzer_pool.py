import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable

logger = logging.getLogger(__name__)


class AnalyzerPool:
    """
    At most `size` daemon threads running analyzer calls.

    Threads are started on demand and never replaced: a call that overruns
    its deadline keeps its thread until it returns, so hung calls shrink
    `free` instead of piling up threads. Daemon threads do not hold up
    interpreter exit.
    """

    def __init__(self, size: int, name: str = "analyzer"):
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.size = size
        self.name = name

        self._tasks: queue.SimpleQueue = queue.SimpleQueue()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._outstanding = 0
        self._closed = False

    @property
    def outstanding(self) -> int:
        """Submitted calls that have not returned yet, queued or running."""
        with self._lock:
            return self._outstanding

    @property
    def free(self) -> int:
        return max(0, self.size - self.outstanding)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def threads(self) -> int:
        return len(self._threads)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        fut: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} pool is shut down")
            self._outstanding += 1
            if len(self._threads) < min(self._outstanding, self.size):
                t = threading.Thread(
                    target=self._work, name=f"{self.name}-{len(self._threads)}", daemon=True
                )
                t.start()
                self._threads.append(t)
        self._tasks.put((fut, fn, args))
        return fut

    def shutdown(self) -> None:
        """Stops idle workers. Calls still running are abandoned, not joined."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            stuck = self._outstanding
            started = len(self._threads)
        for _ in range(started):
            self._tasks.put(None)
        if stuck:
            logger.warning("%s pool shut down with %d call(s) still running", self.name, stuck)

    def _done(self) -> None:
        with self._lock:
            self._outstanding -= 1

    def _work(self) -> None:
        while True:
            item = self._tasks.get()
            if item is None:
                return

            fut, fn, args = item
            if not fut.set_running_or_notify_cancel():
                self._done()
                continue

            # release the slot before waking the waiter so `free` is already current
            try:
                result = fn(*args)
            except BaseException as exc:
                self._done()
                fut.set_exception(exc)
            else:
                self._done()
                fut.set_result(result)
