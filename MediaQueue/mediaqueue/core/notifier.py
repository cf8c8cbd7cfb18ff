from __future__ import annotations

import threading
import time
from collections.abc import Callable

Listener = Callable[[], None]
ErrorCallback = Callable[[str, Exception], None]


class ChangeNotifier:
    """Delivers "something changed" callbacks on a dedicated thread.

    Bursts of notifications raised while listeners are running collapse into a
    single follow-up delivery, so a slow listener delays only other listeners.
    """

    def __init__(self, *, error_cb: ErrorCallback | None = None, name: str = "ChangeNotifier") -> None:
        self._listeners: list[Listener] = []
        self._listeners_lock = threading.Lock()
        self._condition = threading.Condition()
        self._requested = 0
        self._delivered = 0
        self._shutdown = False
        self._error_cb = error_cb
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    def register(self, listener: Listener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def unregister(self, listener: Listener) -> None:
        with self._listeners_lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def start(self) -> None:
        with self._condition:
            if self._started:
                return
            self._started = True
        self._thread.start()

    def notify(self) -> None:
        with self._condition:
            if self._shutdown:
                return
            self._requested += 1
            self._condition.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + max(0.0, float(timeout))
        with self._condition:
            target = self._requested
            while self._delivered < target:
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(remaining)
            return True

    def shutdown(self, timeout: float | None = 2.0) -> None:
        with self._condition:
            self._shutdown = True
            self._condition.notify_all()
        if self._started and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while True:
            with self._condition:
                while self._delivered >= self._requested and not self._shutdown:
                    self._condition.wait()
                if self._shutdown:
                    self._delivered = self._requested
                    self._condition.notify_all()
                    return
                target = self._requested
            self._deliver()
            with self._condition:
                self._delivered = target
                self._condition.notify_all()

    def _deliver(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as exc:
                if self._error_cb:
                    self._error_cb("listener", exc)
