from __future__ import annotations

import os
import shutil
import subprocess
import threading
import webbrowser
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from .models import DownloadStatus, MediaInfo

if TYPE_CHECKING:
    from .downloaders import AbstractDownloader
    from .url_filters import UrlFilter

StatusCallback = Callable[["QueueEntry"], None]
LogCallback = Callable[[str], None]
EntryAction = Callable[[], None]


def open_path_in_shell(path: Path) -> bool:
    try:
        if os.name == "nt":
            os.startfile(str(path))
        else:
            webbrowser.open(path.as_uri())
        return True
    except Exception:
        return False


class QueueEntry:
    def __init__(
        self,
        *,
        download_id: int,
        original_url: str,
        url: str,
        url_filter: UrlFilter,
        downloaders: Sequence[AbstractDownloader],
        status_cb: StatusCallback | None = None,
        log_cb: LogCallback | None = None,
    ) -> None:
        self.download_id = int(download_id)
        self.original_url = str(original_url or "")
        self.url = str(url or "")
        self.filter = url_filter
        self.downloaders: tuple[AbstractDownloader, ...] = tuple(downloaders)
        self.status = DownloadStatus.QUEUED
        self.status_message = ""
        self.media_info = MediaInfo()
        self.media_files: list[Path] = []
        self.actions: dict[str, EntryAction] = {}
        self.tmp_directory: Path | None = None
        self.last_error = ""
        self._status_cb = status_cb
        self._log_cb = log_cb
        self._lock = threading.RLock()
        self._process: subprocess.Popen[str] | None = None
        self._running = threading.Event()
        self._cancel_hook = threading.Event()
        self._closed = threading.Event()
        self._retry_counter = 0

    def __repr__(self) -> str:
        return f"QueueEntry(#{self.download_id}, {self.url!r}, {self.status.value})"

    def log(self, message: str) -> None:
        if self._log_cb:
            self._log_cb(f"[#{self.download_id}] {message}")

    def update_status(self, status: DownloadStatus, message: str = "") -> None:
        with self._lock:
            self.status = DownloadStatus(status)
            self.status_message = str(message or "")
        if self._status_cb:
            self._status_cb(self)

    def update_status_if(self, expected: DownloadStatus, status: DownloadStatus, message: str = "") -> bool:
        with self._lock:
            if self.status != expected:
                return False
            self.status = DownloadStatus(status)
            self.status_message = str(message or "")
        if self._status_cb:
            self._status_cb(self)
        return True

    @property
    def process(self) -> subprocess.Popen[str] | None:
        with self._lock:
            return self._process

    def set_process(self, process: subprocess.Popen[str] | None) -> None:
        with self._lock:
            self._process = process

    def is_process_alive(self) -> bool:
        process = self.process
        return process is not None and process.poll() is None

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def set_running(self, value: bool) -> None:
        if value:
            self._running.set()
        else:
            self._running.clear()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_hook.is_set()

    def cancel(self) -> None:
        self._cancel_hook.set()

    def clear_cancel(self) -> bool:
        # A closed entry stays cancelled for good.
        if self._closed.is_set():
            return False
        self._cancel_hook.clear()
        return True

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()
        self._cancel_hook.set()
        if not self.running:
            self.clean()

    @property
    def retry_counter(self) -> int:
        with self._lock:
            return self._retry_counter

    def increment_retry_counter(self) -> int:
        with self._lock:
            self._retry_counter += 1
            return self._retry_counter

    def reset_retry_counter(self) -> None:
        with self._lock:
            self._retry_counter = 0

    def ensure_tmp_directory(self, base_dir: Path) -> Path:
        with self._lock:
            if self.tmp_directory is None:
                target = Path(base_dir) / f"download-{self.download_id}"
                target.mkdir(parents=True, exist_ok=True)
                self.tmp_directory = target
            return self.tmp_directory

    def clean(self) -> None:
        with self._lock:
            target = self.tmp_directory
            self.tmp_directory = None
        if target is not None and target.exists():
            shutil.rmtree(target, ignore_errors=True)

    def reset_for_restart(self) -> None:
        with self._lock:
            self._process = None
            self.media_files = []
        self.clean()

    def delete_media_files(self) -> int:
        with self._lock:
            files = list(self.media_files)
        removed = 0
        for path in files:
            try:
                if path.is_file():
                    path.unlink()
                    removed += 1
                    self.log(f"Deleted {path}")
            except OSError as exc:
                self.log(f"WARNING: Unable to delete {path}: {exc}")
        with self._lock:
            self.media_files = [path for path in self.media_files if path.exists()]
        return removed

    def open_url(self) -> bool:
        try:
            return bool(webbrowser.open(self.url or self.original_url))
        except Exception:
            return False
