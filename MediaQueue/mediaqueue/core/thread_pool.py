from __future__ import annotations

import concurrent.futures
import itertools
import queue
import threading
from collections.abc import Callable
from typing import Any

_SHUTDOWN_PRIORITY = float("inf")


class PriorityThreadPool:
    """Fixed-size worker pool that runs lower priority numbers first.

    Tasks with equal priority run in submission order.
    """

    def __init__(self, max_workers: int, *, name: str = "MediaQueueWorker") -> None:
        self._max_workers = max(1, int(max_workers))
        self._name = str(name or "MediaQueueWorker")
        self._tasks: queue.PriorityQueue[tuple[float, int, Any]] = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._shutdown = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def _ensure_workers(self) -> None:
        if len(self._threads) >= self._max_workers:
            return
        thread = threading.Thread(
            target=self._worker_loop,
            name=f"{self._name}-{len(self._threads) + 1}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def submit(self, fn: Callable[..., Any], *args: Any, priority: int = 0, **kwargs: Any) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Cannot submit tasks after the pool was shut down")
            self._tasks.put((float(priority), next(self._sequence), (future, fn, args, kwargs)))
            self._ensure_workers()
        return future

    def _worker_loop(self) -> None:
        while True:
            priority, _seq, item = self._tasks.get()
            try:
                if priority == _SHUTDOWN_PRIORITY:
                    return
                future, fn, args, kwargs = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    result = fn(*args, **kwargs)
                except BaseException as exc:
                    future.set_exception(exc)
                else:
                    future.set_result(result)
            finally:
                self._tasks.task_done()

    def shutdown(self, *, wait: bool = True, cancel_pending: bool = False) -> None:
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            threads = list(self._threads)
        if cancel_pending:
            while True:
                try:
                    _priority, _seq, item = self._tasks.get_nowait()
                except queue.Empty:
                    break
                future = item[0]
                future.cancel()
                self._tasks.task_done()
        for _ in threads:
            self._tasks.put((_SHUTDOWN_PRIORITY, next(self._sequence), None))
        if wait:
            for thread in threads:
                if thread is not threading.current_thread():
                    thread.join()
