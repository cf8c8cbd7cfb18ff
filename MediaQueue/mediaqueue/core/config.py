from __future__ import annotations

import json
import os
from pathlib import Path

from .models import AppConfig, PlaylistOption

APP_NAME = "MediaQueue"
APP_VERSION = "1.0.0"

CONFIG_FILENAME = "MediaQueue_config.json"
CONFIG_SCHEMA_VERSION = 1

MAX_SIMULTANEOUS_DOWNLOADS_MIN = 1
MAX_SIMULTANEOUS_DOWNLOADS_MAX = 16
WORKER_THREADS_MIN = 1
WORKER_THREADS_MAX = 32
MAX_DOWNLOAD_RETRIES = 10
MAX_DOWNLOAD_RETRIES_MIN = 0
MAX_DOWNLOAD_RETRIES_MAX = 50
PLAYLIST_OPTION_VALUES = {item.value for item in PlaylistOption}
BROWSER_VALUES = {"", "brave", "chrome", "chromium", "edge", "firefox", "opera", "safari", "vivaldi"}

WATCHDOG_INTERVAL_SECONDS = 0.3
TERMINATION_TIMEOUT_SECONDS = 5.0
CANCEL_TERMINATION_TIMEOUT_SECONDS = 0.3

QUERY_PRIORITY = 1
DOWNLOAD_PRIORITY = 10

YTDLP_BINARY_ENV = "MEDIAQUEUE_YTDLP_BINARY"


def _paths():
    from . import paths as paths_module

    return paths_module


def _coerce_int(value: object, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = default
    return max(minimum, min(maximum, parsed))


def _coerce_bool(value: object, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    return default


def _coerce_non_empty_text(value: object, *, default: str) -> str:
    text = str(value or "").strip()
    return text if text else str(default)


def _default_worker_threads() -> int:
    cpu_count = os.cpu_count() or 4
    return max(4, min(WORKER_THREADS_MAX, int(cpu_count)))


def default_config() -> AppConfig:
    return AppConfig(
        schema_version=CONFIG_SCHEMA_VERSION,
        downloads_path=str(_paths().default_download_dir()),
        max_simultaneous_downloads=3,
        worker_threads=_default_worker_threads(),
        download_video=True,
        download_audio=True,
        auto_download_retry=True,
        max_download_retries=MAX_DOWNLOAD_RETRIES,
        auto_download_start=False,
        read_cookies_from_browser=False,
        browser_for_cookies="",
        capture_any_links=False,
        query_metadata=True,
        playlist_download_option=PlaylistOption.ALWAYS_ASK.value,
        debug_mode=False,
    )


def _sanitize_payload(payload: dict[str, object]) -> AppConfig:
    defaults = default_config()

    downloads_path = _coerce_non_empty_text(
        payload.get("downloads_path", defaults.downloads_path),
        default=defaults.downloads_path,
    )
    playlist_option = str(
        payload.get("playlist_download_option", defaults.playlist_download_option) or ""
    ).strip().lower()
    if playlist_option not in PLAYLIST_OPTION_VALUES:
        playlist_option = defaults.playlist_download_option
    browser = str(payload.get("browser_for_cookies", defaults.browser_for_cookies) or "").strip().lower()
    if browser not in BROWSER_VALUES:
        browser = defaults.browser_for_cookies

    return AppConfig(
        schema_version=CONFIG_SCHEMA_VERSION,
        downloads_path=downloads_path,
        max_simultaneous_downloads=_coerce_int(
            payload.get("max_simultaneous_downloads", defaults.max_simultaneous_downloads),
            defaults.max_simultaneous_downloads,
            MAX_SIMULTANEOUS_DOWNLOADS_MIN,
            MAX_SIMULTANEOUS_DOWNLOADS_MAX,
        ),
        worker_threads=_coerce_int(
            payload.get("worker_threads", defaults.worker_threads),
            defaults.worker_threads,
            WORKER_THREADS_MIN,
            WORKER_THREADS_MAX,
        ),
        download_video=_coerce_bool(payload.get("download_video"), default=defaults.download_video),
        download_audio=_coerce_bool(payload.get("download_audio"), default=defaults.download_audio),
        auto_download_retry=_coerce_bool(
            payload.get("auto_download_retry"),
            default=defaults.auto_download_retry,
        ),
        max_download_retries=_coerce_int(
            payload.get("max_download_retries", defaults.max_download_retries),
            defaults.max_download_retries,
            MAX_DOWNLOAD_RETRIES_MIN,
            MAX_DOWNLOAD_RETRIES_MAX,
        ),
        auto_download_start=_coerce_bool(
            payload.get("auto_download_start"),
            default=defaults.auto_download_start,
        ),
        read_cookies_from_browser=_coerce_bool(
            payload.get("read_cookies_from_browser"),
            default=defaults.read_cookies_from_browser,
        ),
        browser_for_cookies=browser,
        capture_any_links=_coerce_bool(
            payload.get("capture_any_links"),
            default=defaults.capture_any_links,
        ),
        query_metadata=_coerce_bool(payload.get("query_metadata"), default=defaults.query_metadata),
        playlist_download_option=playlist_option,
        debug_mode=_coerce_bool(payload.get("debug_mode"), default=defaults.debug_mode),
    )


def config_path() -> Path:
    return _paths().runtime_storage_dir() / CONFIG_FILENAME


def _load_config_from_path(path: Path) -> AppConfig | None:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            return _sanitize_payload(raw)
    except (OSError, UnicodeError, json.JSONDecodeError, TypeError, ValueError):
        return None
    return None


def load_config() -> AppConfig:
    primary = config_path()
    if primary.exists():
        loaded = _load_config_from_path(primary)
        if loaded is not None:
            return loaded
    return default_config()


def config_to_dict(config: AppConfig) -> dict[str, object]:
    return {
        "schema_version": CONFIG_SCHEMA_VERSION,
        "downloads_path": str(config.downloads_path),
        "max_simultaneous_downloads": int(config.max_simultaneous_downloads),
        "worker_threads": int(config.worker_threads),
        "download_video": bool(config.download_video),
        "download_audio": bool(config.download_audio),
        "auto_download_retry": bool(config.auto_download_retry),
        "max_download_retries": int(config.max_download_retries),
        "auto_download_start": bool(config.auto_download_start),
        "read_cookies_from_browser": bool(config.read_cookies_from_browser),
        "browser_for_cookies": str(config.browser_for_cookies or ""),
        "capture_any_links": bool(config.capture_any_links),
        "query_metadata": bool(config.query_metadata),
        "playlist_download_option": str(
            config.playlist_download_option or PlaylistOption.ALWAYS_ASK.value
        ),
        "debug_mode": bool(config.debug_mode),
    }


def save_config(config: AppConfig) -> str | None:
    payload = config_to_dict(config)
    path = config_path()
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(str(tmp_path), str(path))
        return str(path)
    except (OSError, TypeError, ValueError):
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        return None
