from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from .models import AppConfig, DownloadType, QualitySettings
from .url_utils import filter_playlist, filter_video

DEFAULT_VIDEO_NAME_PATTERN = "%(title).130B (%(resolution)s).%(ext)s"
DEFAULT_AUDIO_NAME_PATTERN = "%(title).130B (%(audio_bitrate)s).%(ext)s"


@dataclass(eq=False)
class UrlFilter:
    filter_id: str = ""
    filter_name: str = ""
    url_regex: str = ""
    video_name_pattern: str = DEFAULT_VIDEO_NAME_PATTERN
    audio_name_pattern: str = DEFAULT_AUDIO_NAME_PATTERN
    embed_thumbnail_and_metadata: bool = False
    quality_settings: QualitySettings = field(default_factory=QualitySettings)
    extra_ytdlp_arguments: dict[DownloadType, list[str]] = field(default_factory=dict)
    _cached_pattern: re.Pattern[str] | None = field(default=None, init=False, repr=False)

    @property
    def display_name(self) -> str:
        return self.filter_name or self.filter_id

    def matches(self, url: str) -> bool:
        if not self.url_regex:
            return False
        if self._cached_pattern is None:
            self._cached_pattern = re.compile(self.url_regex)
        return self._cached_pattern.fullmatch(str(url or "")) is not None

    def get_arguments(self, download_type: DownloadType, config: AppConfig, save_path: Path) -> list[str]:
        arguments = self.build_arguments(download_type, config, save_path)
        arguments.extend(self.extra_ytdlp_arguments.get(DownloadType.ALL, []))
        arguments.extend(self.extra_ytdlp_arguments.get(download_type, []))
        return arguments

    def build_arguments(self, download_type: DownloadType, config: AppConfig, save_path: Path) -> list[str]:
        quality = self.quality_settings
        arguments: list[str] = []
        if download_type == DownloadType.VIDEO:
            height = max(0, int(quality.max_height))
            height_selector = f"[height<={height}]" if height > 0 else ""
            container = str(quality.video_container or "mp4").strip().lower()
            arguments.extend(
                [
                    "-f",
                    f"bestvideo{height_selector}+bestaudio/best{height_selector}/best",
                    "--merge-output-format",
                    container,
                    "-o",
                    str(save_path / self.video_name_pattern),
                ]
            )
        elif download_type == DownloadType.AUDIO:
            arguments.extend(
                [
                    "-f",
                    "bestaudio/best",
                    "--extract-audio",
                    "--audio-format",
                    str(quality.audio_codec or "mp3").strip().lower(),
                    "--audio-quality",
                    f"{quality.audio_bitrate.kbps}K",
                    "-o",
                    str(save_path / self.audio_name_pattern),
                ]
            )
        else:
            return arguments

        if self.embed_thumbnail_and_metadata:
            arguments.extend(["--embed-thumbnail", "--embed-metadata"])
        if config.read_cookies_from_browser and config.browser_for_cookies:
            arguments.extend(["--cookies-from-browser", config.browser_for_cookies])
        return arguments

    def are_cookies_required(self) -> bool:
        return False

    def can_accept_url(self, url: str, config: AppConfig) -> bool:
        return True


@dataclass(eq=False)
class GenericFilter(UrlFilter):
    ID = "default"

    filter_id: str = ID
    filter_name: str = "Default"


@dataclass(eq=False)
class YoutubeFilter(UrlFilter):
    ID = "youtube"

    filter_id: str = ID
    filter_name: str = "YouTube"
    url_regex: str = (
        r"^(https?://)?(www\.|m\.|music\.)?(youtube\.com/(watch\?.*v=|shorts/|live/)|youtu\.be/)"
        r"(?!.*[?&]list=).*$"
    )

    def can_accept_url(self, url: str, config: AppConfig) -> bool:
        return filter_video(url) is not None


@dataclass(eq=False)
class YoutubePlaylistFilter(UrlFilter):
    ID = "youtube_playlist"

    filter_id: str = ID
    filter_name: str = "YouTube Playlists"
    url_regex: str = r"^(https?://)?(www\.|m\.|music\.)?youtube\.com/(watch|playlist)\?.*list=.*$"

    def build_arguments(self, download_type: DownloadType, config: AppConfig, save_path: Path) -> list[str]:
        arguments = super().build_arguments(download_type, config, save_path)
        if arguments:
            arguments.append("--yes-playlist")
        return arguments

    def can_accept_url(self, url: str, config: AppConfig) -> bool:
        return filter_playlist(url) is not None


@dataclass(eq=False)
class CookieRequiredFilter(UrlFilter):
    ID = "cookies_required"

    filter_id: str = ID
    filter_name: str = "Sign-in Sites"
    url_regex: str = r"^(https?://)?(www\.)?(crunchyroll\.com|dropout\.tv|patreon\.com)/.*$"

    def are_cookies_required(self) -> bool:
        return True


def default_url_filters() -> list[UrlFilter]:
    return [
        YoutubePlaylistFilter(),
        YoutubeFilter(),
        CookieRequiredFilter(),
        GenericFilter(),
    ]


def filter_for_url(filters: list[UrlFilter], url: str, *, allow_any_link: bool) -> UrlFilter | None:
    for candidate in filters:
        if candidate.matches(url):
            return candidate
    if allow_any_link:
        for candidate in filters:
            if candidate.filter_id == GenericFilter.ID:
                return candidate
    return None
