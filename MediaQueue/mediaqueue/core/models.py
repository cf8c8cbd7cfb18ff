from __future__ import annotations

from dataclasses import dataclass, field
from enum import Flag, StrEnum, auto


class DownloadStatus(StrEnum):
    QUERYING = "querying"
    QUEUED = "queued"
    STARTING = "starting"
    DOWNLOADING = "downloading"
    STOPPED = "stopped"
    NO_METHOD = "no_method"
    FAILED = "failed"
    COMPLETE = "complete"


class DownloadFlag(Flag):
    NONE = 0
    UNSUPPORTED = auto()
    MAIN_CATEGORY_FAILED = auto()
    STOPPED = auto()
    SUCCESS = auto()


class DownloaderId(StrEnum):
    YT_DLP = "yt-dlp"
    GALLERY_DL = "gallery-dl"
    SPOTDL = "spotdl"


class DownloadType(StrEnum):
    ALL = "ALL"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"


class PlaylistOption(StrEnum):
    ALWAYS_ASK = "always_ask"
    DOWNLOAD_PLAYLIST = "download_playlist"
    DOWNLOAD_SINGLE = "download_single"


class AudioBitrate(StrEnum):
    NO_AUDIO = "no_audio"
    BITRATE_128 = "128"
    BITRATE_192 = "192"
    BITRATE_256 = "256"
    BITRATE_320 = "320"

    @property
    def kbps(self) -> int:
        if self is AudioBitrate.NO_AUDIO:
            return 0
        return int(self.value)


@dataclass(slots=True)
class DownloadResult:
    flags: DownloadFlag
    last_output: str = ""

    def has(self, flag: DownloadFlag) -> bool:
        return bool(self.flags & flag)


@dataclass(slots=True)
class QualitySettings:
    video_container: str = "mp4"
    max_height: int = 0
    audio_codec: str = "mp3"
    audio_bitrate: AudioBitrate = AudioBitrate.BITRATE_320


@dataclass(slots=True)
class MediaInfo:
    title: str = ""
    thumbnail_url: str = ""
    thumbnail_bytes: bytes = b""
    duration_seconds: int | None = None
    source_label: str = ""


@dataclass(slots=True)
class AppConfig:
    schema_version: int
    downloads_path: str
    max_simultaneous_downloads: int
    worker_threads: int
    download_video: bool = True
    download_audio: bool = True
    auto_download_retry: bool = True
    max_download_retries: int = 10
    auto_download_start: bool = False
    read_cookies_from_browser: bool = False
    browser_for_cookies: str = ""
    capture_any_links: bool = False
    query_metadata: bool = True
    playlist_download_option: str = PlaylistOption.ALWAYS_ASK.value
    debug_mode: bool = False


@dataclass(slots=True)
class QueueSnapshot:
    pending: list = field(default_factory=list)
    running: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    completed: list = field(default_factory=list)


class EntryActionName(StrEnum):
    OPEN_IN_BROWSER = "open_in_browser"
    OPEN_DOWNLOADS_DIRECTORY = "open_downloads_directory"
    PLAY_VIDEO = "play_video"
    PLAY_AUDIO = "play_audio"
    RESTART_DOWNLOAD = "restart_download"
    DELETE_FILES = "delete_files"
