from __future__ import annotations

import re
from collections.abc import Iterator
from urllib.parse import parse_qs, urlencode, urlparse

_ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_YOUTUBE_VIDEO_ID_RE = re.compile(r"^[0-9A-Za-z_-]{11}$")
_YOUTUBE_HOSTS = {"youtube.com", "m.youtube.com", "music.youtube.com", "youtube-nocookie.com"}


def coerce_http_url(url: str) -> str:
    value = str(url or "").strip()
    if not value:
        return ""
    try:
        parsed = urlparse(value)
    except Exception:
        return value
    if parsed.scheme:
        return value

    candidate = f"https:{value}" if value.startswith("//") else f"https://{value}"
    try:
        reparsed = urlparse(candidate)
    except Exception:
        return value
    host = str(reparsed.netloc or "").strip()
    if (not host) or (" " in host) or ("." not in host):
        return value
    return candidate


def validate_url(url: str) -> bool:
    value = coerce_http_url(url)
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except Exception:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _host_of(parsed) -> str:
    host = str(parsed.netloc or "").strip().lower()
    if ":" in host:
        host = host.split(":", 1)[0]
    return host[4:] if host.startswith("www.") else host


def filter_video(url: str) -> str | None:
    value = coerce_http_url(url)
    try:
        parsed = urlparse(value)
    except Exception:
        return None
    host = _host_of(parsed)
    video_id = ""
    if host == "youtu.be":
        video_id = parsed.path.strip("/").split("/", 1)[0]
    elif host in _YOUTUBE_HOSTS:
        path = parsed.path or ""
        if path == "/watch":
            video_id = (parse_qs(parsed.query).get("v") or [""])[0]
        else:
            for prefix in ("/shorts/", "/live/", "/embed/", "/v/"):
                if path.startswith(prefix):
                    video_id = path[len(prefix):].split("/", 1)[0]
                    break
    if not _YOUTUBE_VIDEO_ID_RE.match(video_id):
        return None
    return f"https://www.youtube.com/watch?{urlencode({'v': video_id})}"


def filter_playlist(url: str) -> str | None:
    value = coerce_http_url(url)
    try:
        parsed = urlparse(value)
    except Exception:
        return None
    if _host_of(parsed) not in _YOUTUBE_HOSTS:
        return None
    playlist_id = (parse_qs(parsed.query).get("list") or [""])[0].strip()
    if not playlist_id:
        return None
    return f"https://www.youtube.com/playlist?{urlencode({'list': playlist_id})}"


def sanitize_error_text(value: object) -> str:
    text = str(value or "")
    if not text:
        return ""
    no_ansi = _ANSI_ESCAPE_RE.sub("", text)
    no_ctrl = _CONTROL_CHAR_RE.sub("", no_ansi)
    collapsed = no_ctrl.replace("\r", "\n")
    collapsed = re.sub(r"\n{3,}", "\n\n", collapsed)
    return collapsed.strip()


def iter_url_lines(text: str) -> Iterator[str]:
    for raw_line in str(text or "").splitlines():
        value = raw_line.strip()
        if value and not value.startswith("#"):
            yield coerce_http_url(value)
