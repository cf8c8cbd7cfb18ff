from __future__ import annotations

import concurrent.futures
import itertools
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from ..controller.error_policy import classify_failure, describe_failure, is_unsupported_url_error
from .config import DOWNLOAD_PRIORITY, QUERY_PRIORITY, save_config
from .containers import EntryQueue, RearrangeableDeque, RunningQueue
from .downloaders import AbstractDownloader, YtDlpDownloader
from .models import (
    AppConfig,
    AudioBitrate,
    DownloaderId,
    DownloadFlag,
    DownloadStatus,
    EntryActionName,
    PlaylistOption,
    QueueSnapshot,
)
from .notifier import ChangeNotifier
from .process_watchdog import ProcessWatchdog, stop_process
from .queue_entry import QueueEntry
from .thread_pool import PriorityThreadPool
from .url_filters import UrlFilter, YoutubeFilter, YoutubePlaylistFilter, default_url_filters, filter_for_url
from .url_utils import filter_playlist, filter_video, sanitize_error_text

LogCallback = Callable[[str], None]
ExceptionHandler = Callable[[str, Exception], None]
PlaylistResolver = Callable[[PlaylistOption | None, bool], None]
PlaylistPrompt = Callable[[str, PlaylistResolver], None]

STATUS_NOT_STARTED = "Not started"


def _completed_future(value: bool) -> concurrent.futures.Future:
    future: concurrent.futures.Future = concurrent.futures.Future()
    future.set_result(bool(value))
    return future


def _chain_future(source: concurrent.futures.Future, target: concurrent.futures.Future) -> None:
    if target.done():
        return
    exc = source.exception()
    if exc is not None:
        target.set_exception(exc)
    else:
        target.set_result(bool(source.result()))


class _RunState:
    def __init__(self, *, blocked: bool) -> None:
        self._lock = threading.Lock()
        self._blocked = bool(blocked)
        self._running = False

    @property
    def blocked(self) -> bool:
        with self._lock:
            return self._blocked

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def block(self) -> None:
        with self._lock:
            self._blocked = True

    def unblock(self) -> None:
        with self._lock:
            self._blocked = False

    def start(self) -> bool:
        with self._lock:
            if self._blocked:
                return False
            self._running = True
            return True

    def stop(self) -> None:
        with self._lock:
            self._running = False


class DownloadManager:
    def __init__(
        self,
        config: AppConfig,
        *,
        url_filters: Iterable[UrlFilter] | None = None,
        downloaders: Iterable[AbstractDownloader] | None = None,
        log_cb: LogCallback | None = None,
        exception_handler: ExceptionHandler | None = None,
        save_config_cb: Callable[[AppConfig], object] | None = None,
        blocked: bool = True,
        watchdog_interval: float | None = None,
    ) -> None:
        self.config = config
        self._log_cb = log_cb
        self._exception_handler = exception_handler
        self._save_config = save_config_cb or save_config
        self._filters: list[UrlFilter] = list(url_filters) if url_filters is not None else default_url_filters()
        self._downloaders: list[AbstractDownloader] = []
        self._playlist_prompt: PlaylistPrompt | None = None

        self._capture_lock = threading.Lock()
        self._captured_links: set[str] = set()
        self._captured_playlists: set[str] = set()

        self._pending: RearrangeableDeque[QueueEntry] = RearrangeableDeque()
        self._running: RunningQueue[QueueEntry] = RunningQueue()
        self._failed: EntryQueue[QueueEntry] = EntryQueue()
        self._completed: EntryQueue[QueueEntry] = EntryQueue()

        self._state = _RunState(blocked=blocked)
        self._counter_lock = threading.Lock()
        self._running_downloads = 0
        self._download_ids = itertools.count(1)
        self._dispatch_lock = threading.Lock()

        self._notifier = ChangeNotifier(error_cb=self._report_exception)
        self._pool = PriorityThreadPool(self.config.worker_threads)
        watchdog_kwargs: dict[str, float] = {}
        if watchdog_interval is not None:
            watchdog_kwargs["interval_seconds"] = watchdog_interval
        self._watchdog = ProcessWatchdog(
            self._running,
            self.is_running,
            log_cb=self._log,
            debug_mode=lambda: bool(self.config.debug_mode),
            error_cb=self._report_exception,
            **watchdog_kwargs,
        )

        for downloader in downloaders if downloaders is not None else [YtDlpDownloader()]:
            self.register_downloader(downloader)

        self._notifier.start()
        self._watchdog.start()

    # Host wiring

    def _log(self, message: str) -> None:
        if self._log_cb:
            self._log_cb(str(message or ""))

    def _debug(self, message: str) -> None:
        if self.config.debug_mode:
            self._log(message)

    def _report_exception(self, source: str, exc: Exception) -> None:
        self._log(f"ERROR: {source}: {sanitize_error_text(exc) or exc.__class__.__name__}")
        if self._exception_handler is None:
            return
        try:
            self._exception_handler(source, exc)
        except Exception as handler_exc:
            self._log(f"ERROR: Exception handler failed: {handler_exc}")

    def register_listener(self, listener: Callable[[], None]) -> None:
        self._notifier.register(listener)

    def unregister_listener(self, listener: Callable[[], None]) -> None:
        self._notifier.unregister(listener)

    def set_playlist_prompt(self, prompt: PlaylistPrompt | None) -> None:
        self._playlist_prompt = prompt

    def fire_listeners(self) -> None:
        self._notifier.notify()

    def wait_for_listeners(self, timeout: float | None = None) -> bool:
        return self._notifier.wait_idle(timeout)

    def _on_entry_status(self, entry: QueueEntry) -> None:
        self._debug(f"[#{entry.download_id}] {entry.status.value}: {entry.status_message}")
        self._notifier.notify()

    # Downloaders

    def register_downloader(self, downloader: AbstractDownloader) -> None:
        downloader.attach(self)
        self._downloaders.append(downloader)

    @property
    def downloaders(self) -> tuple[AbstractDownloader, ...]:
        return tuple(self._downloaders)

    def is_main_downloader_initialized(self) -> bool:
        return any(
            downloader.is_main_downloader and downloader.has_executable()
            for downloader in self._downloaders
        )

    def set_ffmpeg_path(self, path: Path | str) -> None:
        for downloader in self._downloaders:
            downloader.ffmpeg_path = Path(path)

    def set_executable_path(self, downloader_id: DownloaderId | str, path: Path | str) -> None:
        self._log(f"{downloader_id} {path}")
        for downloader in self._downloaders:
            if downloader.downloader_id == DownloaderId(downloader_id):
                downloader.executable_path = Path(path)

    def _compatible_downloaders(self, url: str) -> list[AbstractDownloader]:
        return [downloader for downloader in self._downloaders if downloader.can_consume_url(url)]

    # Flags

    def is_blocked(self) -> bool:
        return self._state.blocked

    def block(self) -> None:
        self._state.block()
        self._notifier.notify()

    def unblock(self) -> None:
        self._state.unblock()
        self._notifier.notify()
        self.process_queue()

    def is_running(self) -> bool:
        return self._state.running

    def start_downloads(self) -> None:
        if self._state.start():
            self._notifier.notify()
            self.process_queue()

    def stop_downloads(self) -> None:
        self._state.stop()
        self._notifier.notify()

    def toggle_downloads(self) -> None:
        if not self.is_running():
            self.start_downloads()
        else:
            self.stop_downloads()

    # Counts

    @property
    def queue_size(self) -> int:
        return self._pending.size()

    @property
    def downloads_running(self) -> int:
        with self._counter_lock:
            return self._running_downloads

    @property
    def failed_count(self) -> int:
        return self._failed.size()

    @property
    def completed_count(self) -> int:
        return self._completed.size()

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            pending=self._pending.snapshot(),
            running=self._running.snapshot(),
            failed=self._failed.snapshot(),
            completed=self._completed.snapshot(),
        )

    def _adjust_running_downloads(self, delta: int) -> int:
        with self._counter_lock:
            self._running_downloads = max(0, self._running_downloads + int(delta))
            return self._running_downloads

    # Capture

    def is_captured(self, url: str) -> bool:
        with self._capture_lock:
            return url in self._captured_links

    def capture_url(
        self,
        input_url: str | None,
        force: bool = False,
        playlist_option: PlaylistOption | str | None = None,
    ) -> concurrent.futures.Future:
        if self.is_blocked() or input_url is None:
            return _completed_future(False)
        compatible = self._compatible_downloaders(input_url)
        if (not compatible) or self.is_captured(input_url):
            return _completed_future(False)

        url_filter = filter_for_url(
            self._filters,
            input_url,
            allow_any_link=bool(self.config.capture_any_links or force),
        )
        if url_filter is None:
            self._log(f"ERROR: No filter found for url: {input_url}. Ignoring.")
            return _completed_future(False)
        self._debug(f"URL: {input_url} matched {url_filter.display_name}")

        if not url_filter.can_accept_url(input_url, self.config):
            self._log(f"Filter {url_filter.display_name} has denied to accept url {input_url}; Verify settings.")
            return _completed_future(False)

        if isinstance(url_filter, YoutubePlaylistFilter):
            option = PlaylistOption(playlist_option or self.config.playlist_download_option)
            playlist = filter_playlist(input_url)
            if option == PlaylistOption.DOWNLOAD_PLAYLIST:
                filtered_url = playlist
                if playlist is not None:
                    with self._capture_lock:
                        self._captured_playlists.add(playlist)
            elif option == PlaylistOption.DOWNLOAD_SINGLE:
                if playlist is not None:
                    with self._capture_lock:
                        self._captured_playlists.add(playlist)
                return self._capture_single_video(input_url, force)
            else:
                if playlist is None:
                    return _completed_future(False)
                with self._capture_lock:
                    already_captured = playlist in self._captured_playlists
                if already_captured:
                    return self._capture_single_video(input_url, force)
                return self._ask_playlist_option(input_url, playlist, force)
        elif isinstance(url_filter, YoutubeFilter):
            filtered_url = filter_video(input_url)
        else:
            filtered_url = input_url

        if filtered_url is None:
            self._log(f"ERROR: Filtered url was null for {input_url}.")
            return _completed_future(False)

        return _completed_future(self._enqueue_capture(input_url, filtered_url, url_filter, compatible))

    def _capture_single_video(self, input_url: str, force: bool) -> concurrent.futures.Future:
        video = filter_video(input_url)
        self._debug(f"Video url is {video}")
        if video is not None and "?v=" in video and "list=" not in video:
            return self.capture_url(video, force)
        return _completed_future(False)

    def _ask_playlist_option(self, input_url: str, playlist: str, force: bool) -> concurrent.futures.Future:
        prompt = self._playlist_prompt
        if prompt is None:
            return self.capture_url(input_url, force, PlaylistOption.DOWNLOAD_SINGLE)

        future: concurrent.futures.Future = concurrent.futures.Future()

        def resolve(option: PlaylistOption | None, set_default: bool = False) -> None:
            if future.done():
                return
            if option is None:
                future.set_result(False)
                return
            chosen = PlaylistOption(option)
            if chosen == PlaylistOption.ALWAYS_ASK:
                future.set_result(False)
                return
            if set_default:
                self.config.playlist_download_option = chosen.value
                self._save_config(self.config)
            target_url = playlist if chosen == PlaylistOption.DOWNLOAD_PLAYLIST else input_url
            try:
                chained = self.capture_url(target_url, force, chosen)
            except Exception as exc:
                self._report_exception("capture", exc)
                future.set_exception(exc)
                return
            chained.add_done_callback(lambda done: _chain_future(done, future))

        prompt(playlist, resolve)
        return future

    def _enqueue_capture(
        self,
        input_url: str,
        filtered_url: str,
        url_filter: UrlFilter,
        compatible: list[AbstractDownloader],
    ) -> bool:
        with self._capture_lock:
            if filtered_url in self._captured_links:
                return False
            self._captured_links.add(filtered_url)
            self._captured_links.add(input_url)
            download_id = next(self._download_ids)

        self._log(f"Captured {input_url}")
        entry = QueueEntry(
            download_id=download_id,
            original_url=input_url,
            url=filtered_url,
            url_filter=url_filter,
            downloaders=compatible,
            status_cb=self._on_entry_status,
            log_cb=self._log,
        )
        entry.update_status(DownloadStatus.QUERYING, "Querying")
        entry.actions[EntryActionName.OPEN_IN_BROWSER.value] = entry.open_url

        self._query_video(entry)

        self._pending.offer_last(entry)
        self._notifier.notify()

        if self.config.auto_download_start and not self.is_running():
            self.start_downloads()
        self.process_queue()
        return True

    def _query_video(self, entry: QueueEntry) -> None:
        self._pool.submit(self._query_task, entry, priority=QUERY_PRIORITY)

    def _query_task(self, entry: QueueEntry) -> None:
        if entry.cancel_requested:
            return
        try:
            for downloader in entry.downloaders:
                if downloader.try_query_video(entry):
                    break
        except Exception as exc:
            entry.log(f"ERROR: Metadata query failed: {sanitize_error_text(exc)}")
            self._report_exception("query", exc)
        entry.update_status_if(DownloadStatus.QUERYING, DownloadStatus.QUEUED, STATUS_NOT_STARTED)

    # Per-entry hooks

    def close_entry(self, entry: QueueEntry) -> None:
        entry.close()
        with self._capture_lock:
            self._captured_playlists.discard(entry.original_url)
            self._captured_links.discard(entry.original_url)
            self._captured_links.discard(entry.url)
        self._pending.remove(entry)
        self._failed.remove(entry)
        self._completed.remove(entry)
        self._notifier.notify()

    def can_move_entry(self, entry: QueueEntry) -> bool:
        return self._pending.contains(entry)

    def move_entry(self, entry: QueueEntry, target_index: int) -> bool:
        if not self._pending.contains(entry):
            return False
        try:
            self._pending.move_to_position(entry, target_index)
        except KeyError as exc:
            # Dispatched between the check and the move.
            self._debug(f"[#{entry.download_id}] Unable to move entry: {exc}")
            return False
        self._notifier.notify()
        return True

    def restart_download(self, entry: QueueEntry) -> bool:
        if entry.closed or entry.running:
            return False
        with self._dispatch_lock:
            parked = self._completed.remove(entry) or self._failed.remove(entry)
            if not parked and not self._pending.contains(entry):
                # Already dispatched; its task is waiting for a worker.
                return False
            entry.update_status(DownloadStatus.QUEUED, STATUS_NOT_STARTED)
            entry.reset_for_restart()
            entry.reset_retry_counter()
            entry.clear_cancel()
            if parked:
                self._pending.offer_last(entry)
        self._notifier.notify()
        self.process_queue()
        return True

    def retry_failed_downloads(self) -> None:
        while (entry := self._failed.poll()) is not None:
            entry.update_status(DownloadStatus.QUEUED, STATUS_NOT_STARTED)
            # The counter normally survives requeues, but not a manual retry.
            entry.reset_retry_counter()
            entry.reset_for_restart()
            entry.clear_cancel()
            self._pending.offer_last(entry)
        self._notifier.notify()
        self.start_downloads()

    def clear_queue(self) -> None:
        with self._capture_lock:
            self._captured_links.clear()
            self._captured_playlists.clear()

        # Running entries are left alone.
        for queue in (self._pending, self._failed):
            while (entry := queue.poll()) is not None:
                if not entry.running:
                    entry.clean()
        self._completed.clear()
        self._notifier.notify()

    # Dispatcher

    def _poll_runnable(self) -> QueueEntry | None:
        with self._dispatch_lock:
            if not self.is_running():
                return None
            if self.downloads_running >= self.config.max_simultaneous_downloads:
                return None
            entry = self._pending.poll()
            if entry is None or entry.closed:
                return entry
            self._adjust_running_downloads(1)
            return entry

    def process_queue(self) -> None:
        while True:
            entry = self._poll_runnable()
            if entry is None:
                break
            if entry.closed:
                entry.clean()
                # The rest of the queue still needs a dispatcher pass.
                self.process_queue()
                return

            self._notifier.notify()
            try:
                self._pool.submit(self._download_task, entry, priority=DOWNLOAD_PRIORITY)
            except RuntimeError as exc:
                self._adjust_running_downloads(-1)
                self._pending.offer_first(entry)
                self._report_exception("dispatch", exc)
                break

        with self._dispatch_lock:
            idle = self.is_running() and self.downloads_running == 0 and self._pending.is_empty()
        if idle:
            self.stop_downloads()

    def _place(self, entry: QueueEntry, target: RearrangeableDeque[QueueEntry], *, front: bool = False) -> None:
        self._running.remove(entry)
        if entry.closed:
            entry.clean()
        elif front:
            target.offer_first(entry)
        else:
            target.offer_last(entry)
        self._notifier.notify()

    def _download_task(self, entry: QueueEntry) -> None:
        try:
            if not self.is_running():
                self._pending.offer_first(entry)
                return
            if not self._check_download_method(entry):
                return

            entry.set_running(True)
            entry.update_status(DownloadStatus.STARTING, "Starting")
            self._running.offer(entry)
            try:
                self._run_downloaders(entry)
            finally:
                self._running.remove(entry)
        except Exception as exc:
            self._handle_download_fault(entry, exc)
        finally:
            entry.set_running(False)
            self._adjust_running_downloads(-1)
            self._notifier.notify()
            self.process_queue()

    def _check_download_method(self, entry: QueueEntry) -> bool:
        config = self.config
        url_filter = entry.filter
        if url_filter.are_cookies_required() and not config.read_cookies_from_browser:
            entry.log(f"WARNING: Cookies are required for this website {entry.original_url}")

        message = ""
        if not config.download_audio and not config.download_video:
            message = "Enable video or audio downloads to start this download."
        elif (
            config.download_audio
            and not config.download_video
            and url_filter.quality_settings.audio_bitrate == AudioBitrate.NO_AUDIO
        ):
            message = "Select an audio quality to download audio only."
        if not message:
            return True

        entry.log(f"ERROR: {url_filter.display_name} - {message}")
        entry.update_status(DownloadStatus.NO_METHOD, message)
        entry.reset_for_restart()
        self._place(entry, self._failed)
        if self._pending.size() <= 1:
            self.stop_downloads()
        return False

    def _run_downloaders(self, entry: QueueEntry) -> None:
        for downloader in entry.downloaders:
            result = downloader.try_download(entry)
            last_output = result.last_output

            if result.has(DownloadFlag.UNSUPPORTED):
                continue

            if entry.cancel_requested:
                entry.update_status(DownloadStatus.FAILED, "Download cancelled")
                entry.reset_for_restart()
                self._place(entry, self._failed)
                return

            if result.has(DownloadFlag.MAIN_CATEGORY_FAILED):
                self._handle_main_category_failure(entry, last_output)
                return

            if (not self.is_running()) or result.has(DownloadFlag.STOPPED):
                entry.update_status(DownloadStatus.STOPPED, STATUS_NOT_STARTED)
                entry.reset_for_restart()
                self._place(entry, self._pending, front=True)
                return

            if result.has(DownloadFlag.SUCCESS):
                actions = downloader.process_media_files(entry)
                actions[EntryActionName.RESTART_DOWNLOAD.value] = lambda: self.restart_download(entry)
                actions[EntryActionName.DELETE_FILES.value] = entry.delete_media_files
                entry.actions.update(actions)
                entry.update_status(DownloadStatus.COMPLETE, "Finished")
                entry.clean()
                self._place(entry, self._completed)
                return

            entry.log(f"ERROR: Unexpected download state {result.flags!r} from {downloader.downloader_id}")

        entry.update_status(DownloadStatus.FAILED, "No compatible downloader could handle this URL.")
        entry.reset_for_restart()
        self._place(entry, self._failed)

    def _handle_main_category_failure(self, entry: QueueEntry, last_output: str) -> None:
        config = self.config
        max_retries = int(config.max_download_retries)
        if (
            (not config.auto_download_retry)
            or entry.increment_retry_counter() > max_retries
            or is_unsupported_url_error(last_output)
        ):
            entry.log(f"ERROR: Download failed, all retry attempts failed: {describe_failure(last_output)}")
            entry.log(classify_failure(last_output).hint)
            entry.update_status(DownloadStatus.FAILED, last_output)
            entry.reset_for_restart()
            entry.last_error = last_output
            self._place(entry, self._failed)
            return

        entry.log(f"WARNING: Download failed, retrying ({entry.retry_counter}/{max_retries}): {last_output}")
        entry.update_status(DownloadStatus.STOPPED, STATUS_NOT_STARTED)
        entry.reset_for_restart()
        self._place(entry, self._pending, front=True)

    def _handle_download_fault(self, entry: QueueEntry, exc: Exception) -> None:
        message = sanitize_error_text(exc) or exc.__class__.__name__
        entry.log(f"ERROR: Failed to download: {message}")
        entry.update_status(DownloadStatus.FAILED, message)
        entry.reset_for_restart()
        entry.last_error = message
        if entry.increment_retry_counter() > int(self.config.max_download_retries):
            self._place(entry, self._failed)
        else:
            self._place(entry, self._pending)
        self._report_exception("download", exc)

    # Lifecycle

    def shutdown(self) -> None:
        self.block()
        self.stop_downloads()
        self._watchdog.shutdown()
        for entry in self._running:
            process = entry.process
            if process is not None and process.poll() is None:
                stop_process(process, log_cb=entry.log)
        self._pool.shutdown(wait=False, cancel_pending=True)
        self._notifier.shutdown()
