from __future__ import annotations

import os
import subprocess
import threading
import time
from collections.abc import Callable, Iterable

from .config import (
    CANCEL_TERMINATION_TIMEOUT_SECONDS,
    TERMINATION_TIMEOUT_SECONDS,
    WATCHDOG_INTERVAL_SECONDS,
)
from .queue_entry import QueueEntry

LogCallback = Callable[[str], None]
ErrorCallback = Callable[[str, Exception], None]


def _force_kill(process: subprocess.Popen[str]) -> None:
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(process.pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    else:
        process.kill()


def stop_process(
    process: subprocess.Popen[str],
    *,
    timeout_seconds: float = TERMINATION_TIMEOUT_SECONDS,
    log_cb: LogCallback | None = None,
) -> float | None:
    if process.poll() is not None:
        return None
    started = time.monotonic()
    process.terminate()
    try:
        process.wait(timeout=max(0.0, float(timeout_seconds)))
    except subprocess.TimeoutExpired:
        if log_cb:
            log_cb("WARNING: Process did not terminate in time, forcefully stopping it.")
        _force_kill(process)
        try:
            process.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            pass
    elapsed_ms = (time.monotonic() - started) * 1000.0
    if log_cb:
        log_cb(f"Took {elapsed_ms:.0f}ms to stop the process.")
    return elapsed_ms


class ProcessWatchdog:
    def __init__(
        self,
        running_entries: Iterable[QueueEntry],
        is_running: Callable[[], bool],
        *,
        interval_seconds: float = WATCHDOG_INTERVAL_SECONDS,
        termination_timeout: float = TERMINATION_TIMEOUT_SECONDS,
        cancel_termination_timeout: float = CANCEL_TERMINATION_TIMEOUT_SECONDS,
        log_cb: LogCallback | None = None,
        debug_mode: Callable[[], bool] | None = None,
        error_cb: ErrorCallback | None = None,
    ) -> None:
        self._running_entries = running_entries
        self._is_running = is_running
        self._interval_seconds = max(0.01, float(interval_seconds))
        self._termination_timeout = max(0.0, float(termination_timeout))
        self._cancel_termination_timeout = max(0.0, float(cancel_termination_timeout))
        self._log_cb = log_cb
        self._debug_mode = debug_mode or (lambda: False)
        self._error_cb = error_cb
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stopping_lock = threading.Lock()
        self._stopping: set[int] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._run, name="ProcessWatchdog", daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float | None = 2.0) -> None:
        self._shutdown_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _log(self, message: str) -> None:
        if self._log_cb:
            self._log_cb(message)

    def _run(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                self.scan_once()
            except Exception as exc:
                self._log(f"ERROR: Process watchdog scan failed: {exc}")
                if self._error_cb:
                    self._error_cb("watchdog", exc)
            if self._shutdown_event.wait(self._interval_seconds):
                break

    def scan_once(self) -> int:
        downloads_running = bool(self._is_running())
        dispatched = 0
        for entry in self._running_entries:
            if downloads_running and not entry.cancel_requested:
                continue
            process = entry.process
            if process is None or process.poll() is not None:
                continue
            if self._begin_stop(entry):
                dispatched += 1
        return dispatched

    def _begin_stop(self, entry: QueueEntry) -> bool:
        with self._stopping_lock:
            if entry.download_id in self._stopping:
                return False
            self._stopping.add(entry.download_id)
        if self._debug_mode():
            entry.log(f"Process watchdog is stopping {entry.url}")
        timeout = self._cancel_termination_timeout if entry.cancel_requested else self._termination_timeout
        # Each stop waits on its own thread so one hung process cannot stall the scan.
        threading.Thread(
            target=self._stop_entry_process,
            args=(entry, timeout),
            name=f"ProcessStopper-{entry.download_id}",
            daemon=True,
        ).start()
        return True

    def _stop_entry_process(self, entry: QueueEntry, timeout: float) -> None:
        try:
            process = entry.process
            if process is not None:
                stop_process(process, timeout_seconds=timeout, log_cb=entry.log)
        except Exception as exc:
            entry.log(f"ERROR: Failed to stop process: {exc}")
            if self._error_cb:
                self._error_cb("watchdog", exc)
        finally:
            with self._stopping_lock:
                self._stopping.discard(entry.download_id)
