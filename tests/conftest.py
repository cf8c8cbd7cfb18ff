from __future__ import annotations

import subprocess
import threading
import time
from collections.abc import Callable

import pytest

from mediaqueue.core.download_manager import DownloadManager
from mediaqueue.core.downloaders import AbstractDownloader
from mediaqueue.core.models import AppConfig, DownloaderId, DownloadFlag, DownloadResult
from mediaqueue.core.queue_entry import QueueEntry


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def collections_containing(manager: DownloadManager, entry: QueueEntry) -> list[str]:
    snapshot = manager.snapshot()
    found = []
    for name in ("pending", "running", "failed", "completed"):
        if any(item is entry for item in getattr(snapshot, name)):
            found.append(name)
    return found


class FakeProcess:
    def __init__(self, *, stubborn: bool = False) -> None:
        self.pid = 4242
        self.stubborn = stubborn
        self.terminate_calls = 0
        self.kill_calls = 0
        self._returncode: int | None = None
        self._exited = threading.Event()

    def poll(self) -> int | None:
        return self._returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.stubborn:
            self.finish(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("fake", timeout)
        return int(self._returncode or 0)

    def finish(self, code: int = 0) -> None:
        if self._returncode is None:
            self._returncode = code
            self._exited.set()


class FakeDownloader(AbstractDownloader):
    downloader_id = DownloaderId.YT_DLP

    def __init__(
        self,
        results: list[DownloadResult | Exception] | None = None,
        *,
        consume: bool = True,
        query_result: bool = True,
        blocking: bool = False,
        stubborn: bool = False,
        main: bool = True,
    ) -> None:
        super().__init__()
        self.results = list(results or [])
        self.consume = consume
        self.query_result = query_result
        self.blocking = blocking
        self.stubborn = stubborn
        self.main = main
        self.download_calls: list[QueueEntry] = []
        self.query_calls: list[QueueEntry] = []
        self.processed: list[QueueEntry] = []
        self.processes: list[FakeProcess] = []
        self._lock = threading.Lock()

    @property
    def is_main_downloader(self) -> bool:
        return self.main

    def can_consume_url(self, url: str) -> bool:
        return self.consume

    def try_query_video(self, entry: QueueEntry) -> bool:
        self.query_calls.append(entry)
        entry.media_info.title = f"Video {entry.download_id}"
        return self.query_result

    def try_download(self, entry: QueueEntry) -> DownloadResult:
        self.download_calls.append(entry)
        if self.blocking:
            process = FakeProcess(stubborn=self.stubborn)
            with self._lock:
                self.processes.append(process)
            entry.set_process(process)
            try:
                process.wait()
            finally:
                entry.set_process(None)
            if entry.cancel_requested or not self.manager.is_running():
                return DownloadResult(DownloadFlag.STOPPED, "stopped")
            return DownloadResult(DownloadFlag.SUCCESS, "done")

        with self._lock:
            result = self.results.pop(0) if self.results else DownloadResult(DownloadFlag.SUCCESS, "done")
        if isinstance(result, Exception):
            raise result
        return result

    def process_media_files(self, entry: QueueEntry) -> dict[str, Callable[[], None]]:
        self.processed.append(entry)
        return {"open_downloads_directory": lambda: None}

    def release_all(self, code: int = 0) -> None:
        with self._lock:
            processes = list(self.processes)
        for process in processes:
            process.finish(code)


@pytest.fixture
def make_config(tmp_path):
    def factory(**overrides) -> AppConfig:
        values = {
            "schema_version": 1,
            "downloads_path": str(tmp_path / "downloads"),
            "max_simultaneous_downloads": 1,
            "worker_threads": 4,
            "capture_any_links": True,
        }
        values.update(overrides)
        return AppConfig(**values)

    return factory


@pytest.fixture
def log_lines():
    return []


@pytest.fixture
def make_manager(make_config, log_lines):
    managers: list[DownloadManager] = []

    def factory(*downloaders: AbstractDownloader, config: AppConfig | None = None, **kwargs) -> DownloadManager:
        kwargs.setdefault("blocked", False)
        kwargs.setdefault("log_cb", log_lines.append)
        kwargs.setdefault("save_config_cb", lambda _config: None)
        manager = DownloadManager(
            config or make_config(),
            downloaders=list(downloaders) or [FakeDownloader()],
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        for downloader in manager.downloaders:
            if isinstance(downloader, FakeDownloader):
                downloader.release_all()
        manager.shutdown()
