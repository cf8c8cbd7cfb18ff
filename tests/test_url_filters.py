from __future__ import annotations

from pathlib import Path

from mediaqueue.core.models import AudioBitrate, DownloadType
from mediaqueue.core.url_filters import (
    CookieRequiredFilter,
    GenericFilter,
    YoutubeFilter,
    YoutubePlaylistFilter,
    default_url_filters,
    filter_for_url,
)


def test_filter_for_url_prefers_specific_filters():
    filters = default_url_filters()

    assert isinstance(filter_for_url(filters, "https://youtu.be/dQw4w9WgXcQ", allow_any_link=False), YoutubeFilter)
    assert isinstance(
        filter_for_url(filters, "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL1", allow_any_link=False),
        YoutubePlaylistFilter,
    )
    assert isinstance(
        filter_for_url(filters, "https://www.patreon.com/posts/1", allow_any_link=False),
        CookieRequiredFilter,
    )


def test_filter_for_url_generic_fallback_needs_permission():
    filters = default_url_filters()

    assert filter_for_url(filters, "https://example.com/clip", allow_any_link=False) is None
    assert isinstance(filter_for_url(filters, "https://example.com/clip", allow_any_link=True), GenericFilter)


def test_video_arguments(make_config, tmp_path):
    url_filter = GenericFilter()
    url_filter.quality_settings.max_height = 720
    url_filter.quality_settings.video_container = "MKV"

    arguments = url_filter.get_arguments(DownloadType.VIDEO, make_config(), tmp_path)

    assert arguments[:4] == ["-f", "bestvideo[height<=720]+bestaudio/best[height<=720]/best", "--merge-output-format", "mkv"]
    assert Path(arguments[arguments.index("-o") + 1]).parent == tmp_path


def test_audio_arguments_include_bitrate_and_cookies(make_config, tmp_path):
    url_filter = GenericFilter(embed_thumbnail_and_metadata=True)
    url_filter.quality_settings.audio_bitrate = AudioBitrate.BITRATE_192
    config = make_config(read_cookies_from_browser=True, browser_for_cookies="firefox")

    arguments = url_filter.get_arguments(DownloadType.AUDIO, config, tmp_path)

    assert "--extract-audio" in arguments
    assert arguments[arguments.index("--audio-quality") + 1] == "192K"
    assert "--embed-thumbnail" in arguments
    assert arguments[arguments.index("--cookies-from-browser") + 1] == "firefox"


def test_extra_arguments_are_appended(make_config, tmp_path):
    url_filter = GenericFilter(
        extra_ytdlp_arguments={
            DownloadType.ALL: ["--no-part"],
            DownloadType.AUDIO: ["--audio-format", "opus"],
        }
    )

    video = url_filter.get_arguments(DownloadType.VIDEO, make_config(), tmp_path)
    audio = url_filter.get_arguments(DownloadType.AUDIO, make_config(), tmp_path)

    assert video[-1] == "--no-part"
    assert audio[-3:] == ["--no-part", "--audio-format", "opus"]


def test_playlist_filter_adds_yes_playlist(make_config, tmp_path):
    arguments = YoutubePlaylistFilter().get_arguments(DownloadType.VIDEO, make_config(), tmp_path)

    assert "--yes-playlist" in arguments


def test_cookie_requirement_and_acceptance(make_config):
    config = make_config()

    assert CookieRequiredFilter().are_cookies_required() is True
    assert GenericFilter().are_cookies_required() is False
    assert YoutubeFilter().can_accept_url("https://youtu.be/short", config) is False
    assert YoutubePlaylistFilter().can_accept_url("https://www.youtube.com/watch?list=PL1", config) is True
