from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import requests

from .config import YTDLP_BINARY_ENV
from .models import (
    AudioBitrate,
    DownloaderId,
    DownloadFlag,
    DownloadResult,
    DownloadStatus,
    DownloadType,
    EntryActionName,
)
from .paths import resolve_binary, scratch_dir
from .process_watchdog import stop_process
from .queue_entry import QueueEntry, open_path_in_shell
from .thumbnails import fetch_thumbnail
from .url_utils import sanitize_error_text, validate_url

if TYPE_CHECKING:
    from .download_manager import DownloadManager

_PROGRESS_RE = re.compile(r"(?P<percent>\d+(?:\.\d+)?)%")
_IMPORTANT_LOG_TOKENS = (
    "error:",
    "warning:",
    "has already been downloaded",
)
_PARTIAL_SUFFIXES = {".part", ".ytdl", ".temp", ".tmp"}
VIDEO_EXTENSIONS = {".mp4", ".mkv", ".webm", ".mov", ".avi", ".flv"}
AUDIO_EXTENSIONS = {".mp3", ".m4a", ".opus", ".ogg", ".wav", ".flac", ".aac"}


def _is_important_log_line(line: str) -> bool:
    lowered = str(line or "").strip().lower()
    if not lowered:
        return False
    return any(token in lowered for token in _IMPORTANT_LOG_TOKENS)


def _metadata_extract_options(timeout_seconds: float | None = None) -> dict[str, object]:
    opts: dict[str, object] = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "simulate": True,
        "extract_flat": "in_playlist",
        "retries": 0,
        "extractor_retries": 0,
    }
    if isinstance(timeout_seconds, (int, float)):
        opts["socket_timeout"] = max(1.0, float(timeout_seconds))
    return opts


def _extract_duration_seconds(info: dict[str, object]) -> int | None:
    value = info.get("duration")
    if isinstance(value, (int, float)):
        seconds = int(round(float(value)))
        if seconds > 0:
            return seconds
    return None


def _extract_source_label(info: dict[str, object], fallback_url: str) -> str:
    explicit_domain = str(info.get("webpage_url_domain") or "").strip().lower()
    if explicit_domain:
        return explicit_domain
    for key in ("extractor_key", "extractor"):
        extractor = str(info.get(key) or "").strip()
        if extractor and extractor.lower() != "generic":
            return extractor.replace("_", " ")
    try:
        host = str(urlparse(str(fallback_url or "")).netloc or "").strip().lower()
    except Exception:
        return ""
    return host[4:] if host.startswith("www.") else host


def _unique_destination(directory: Path, name: str) -> Path:
    candidate = directory / name
    if not candidate.exists():
        return candidate
    stem = Path(name).stem
    suffix = Path(name).suffix
    index = 1
    while True:
        candidate = directory / f"{stem} ({index}){suffix}"
        if not candidate.exists():
            return candidate
        index += 1


class AbstractDownloader(ABC):
    downloader_id: DownloaderId

    def __init__(self) -> None:
        self.manager: DownloadManager | None = None
        self.executable_path: Path | None = None
        self.ffmpeg_path: Path | None = None

    def attach(self, manager: DownloadManager) -> None:
        self.manager = manager

    @property
    def is_main_downloader(self) -> bool:
        return False

    def has_executable(self) -> bool:
        return self.executable_path is not None and self.executable_path.exists()

    @abstractmethod
    def can_consume_url(self, url: str) -> bool: ...

    @abstractmethod
    def try_query_video(self, entry: QueueEntry) -> bool: ...

    @abstractmethod
    def try_download(self, entry: QueueEntry) -> DownloadResult: ...

    @abstractmethod
    def process_media_files(self, entry: QueueEntry) -> dict[str, Callable[[], None]]: ...


class YtDlpDownloader(AbstractDownloader):
    downloader_id = DownloaderId.YT_DLP

    @property
    def is_main_downloader(self) -> bool:
        return True

    def can_consume_url(self, url: str) -> bool:
        return validate_url(url)

    def _resolve_command_prefix(self) -> list[str]:
        if self.has_executable():
            return [str(self.executable_path)]
        explicit = str(os.environ.get(YTDLP_BINARY_ENV, "")).strip()
        if explicit:
            candidate = Path(explicit).expanduser()
            if candidate.exists():
                return [str(candidate)]
        binary = resolve_binary("yt-dlp")
        if binary:
            return [binary]
        if getattr(sys, "frozen", False):
            raise FileNotFoundError(
                "yt-dlp executable was not found. Place yt-dlp next to the app or in PATH."
            )
        return [sys.executable, "-m", "yt_dlp"]

    def _resolve_ffmpeg(self) -> str | None:
        if self.ffmpeg_path is not None and self.ffmpeg_path.exists():
            return str(self.ffmpeg_path)
        return resolve_binary("ffmpeg")

    def try_query_video(self, entry: QueueEntry) -> bool:
        manager = self.manager
        if manager is None or not manager.config.query_metadata:
            return False
        try:
            from yt_dlp import YoutubeDL
        except Exception as exc:
            entry.log(f"WARNING: yt-dlp import failed: {exc}")
            return False

        try:
            with YoutubeDL(_metadata_extract_options(15.0)) as ydl:
                info = ydl.extract_info(entry.url, download=False)
        except Exception as exc:
            entry.log(f"WARNING: Metadata query failed: {sanitize_error_text(exc)}")
            return False

        info_dict = info if isinstance(info, dict) else {}
        media_info = entry.media_info
        media_info.title = str(info_dict.get("title") or "")
        media_info.thumbnail_url = str(info_dict.get("thumbnail") or "")
        media_info.duration_seconds = _extract_duration_seconds(info_dict)
        media_info.source_label = _extract_source_label(info_dict, entry.url)
        if media_info.thumbnail_url:
            try:
                media_info.thumbnail_bytes = fetch_thumbnail(media_info.thumbnail_url)
            except requests.RequestException as exc:
                entry.log(f"WARNING: Thumbnail download failed: {exc}")
        if manager.config.debug_mode:
            entry.log(f"Queried metadata: {media_info.title or entry.url}")
        return True

    def _build_command(self, entry: QueueEntry, download_type: DownloadType, save_path: Path) -> list[str]:
        manager = self.manager
        assert manager is not None
        command = [
            *self._resolve_command_prefix(),
            "--newline",
            "--no-warnings",
            "--no-mtime",
        ]
        ffmpeg = self._resolve_ffmpeg()
        if ffmpeg:
            command.extend(["--ffmpeg-location", ffmpeg])
        command.extend(entry.filter.get_arguments(download_type, manager.config, save_path))
        command.append(entry.url)
        return command

    def _should_stop(self, entry: QueueEntry) -> bool:
        manager = self.manager
        return entry.cancel_requested or manager is None or (not manager.is_running())

    def _run_process(self, entry: QueueEntry, command: list[str]) -> tuple[int, str]:
        manager = self.manager
        debug = manager is not None and manager.config.debug_mode
        if debug:
            entry.log(f"Running: {subprocess.list2cmdline(command)}")
        creationflags = subprocess.CREATE_NO_WINDOW if os.name == "nt" else 0
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            creationflags=creationflags,
        )
        entry.set_process(process)
        last_output = ""
        try:
            stream = process.stdout
            if stream is not None:
                for line in iter(stream.readline, ""):
                    clean = sanitize_error_text(line)
                    if not clean:
                        continue
                    last_output = clean
                    if _is_important_log_line(clean) or debug:
                        entry.log(clean)
                    if clean.startswith("[download]") and _PROGRESS_RE.search(clean):
                        entry.update_status(DownloadStatus.DOWNLOADING, clean)
            return process.wait(), last_output
        finally:
            if process.poll() is None:
                stop_process(process)
            entry.set_process(None)
            try:
                if process.stdout:
                    process.stdout.close()
            except OSError:
                pass

    def _enabled_download_types(self, entry: QueueEntry) -> list[DownloadType]:
        manager = self.manager
        assert manager is not None
        config = manager.config
        types: list[DownloadType] = []
        if config.download_video:
            types.append(DownloadType.VIDEO)
        if config.download_audio and entry.filter.quality_settings.audio_bitrate != AudioBitrate.NO_AUDIO:
            types.append(DownloadType.AUDIO)
        return types

    def try_download(self, entry: QueueEntry) -> DownloadResult:
        if self.manager is None:
            return DownloadResult(DownloadFlag.UNSUPPORTED)
        save_path = entry.ensure_tmp_directory(scratch_dir())
        last_output = ""
        for download_type in self._enabled_download_types(entry):
            if self._should_stop(entry):
                return DownloadResult(DownloadFlag.STOPPED, last_output)
            try:
                command = self._build_command(entry, download_type, save_path)
            except FileNotFoundError as exc:
                return DownloadResult(DownloadFlag.MAIN_CATEGORY_FAILED, str(exc))
            try:
                return_code, last_output = self._run_process(entry, command)
            except OSError as exc:
                return DownloadResult(DownloadFlag.MAIN_CATEGORY_FAILED, sanitize_error_text(exc))
            if self._should_stop(entry):
                return DownloadResult(DownloadFlag.STOPPED, last_output)
            if return_code != 0:
                return DownloadResult(
                    DownloadFlag.MAIN_CATEGORY_FAILED,
                    last_output or f"yt-dlp exited with {return_code}",
                )
        return DownloadResult(DownloadFlag.SUCCESS, last_output)

    def process_media_files(self, entry: QueueEntry) -> dict[str, Callable[[], None]]:
        manager = self.manager
        assert manager is not None
        target_dir = Path(manager.config.downloads_path).expanduser()
        target_dir.mkdir(parents=True, exist_ok=True)
        moved: list[Path] = []
        source_dir = entry.tmp_directory
        if source_dir is not None and source_dir.exists():
            for path in sorted(source_dir.rglob("*")):
                if (not path.is_file()) or path.suffix.lower() in _PARTIAL_SUFFIXES:
                    continue
                destination = _unique_destination(target_dir, path.name)
                shutil.move(str(path), str(destination))
                moved.append(destination)
                entry.log(f"Saved {destination}")
        entry.media_files = moved

        actions: dict[str, Callable[[], None]] = {
            EntryActionName.OPEN_DOWNLOADS_DIRECTORY.value: lambda: open_path_in_shell(target_dir),
        }
        video = next((path for path in moved if path.suffix.lower() in VIDEO_EXTENSIONS), None)
        if video is not None:
            actions[EntryActionName.PLAY_VIDEO.value] = lambda: open_path_in_shell(video)
        audio = next((path for path in moved if path.suffix.lower() in AUDIO_EXTENSIONS), None)
        if audio is not None:
            actions[EntryActionName.PLAY_AUDIO.value] = lambda: open_path_in_shell(audio)
        return actions
