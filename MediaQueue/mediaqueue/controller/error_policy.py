from __future__ import annotations

from dataclasses import dataclass

UNSUPPORTED_URL_MARKER = "Unsupported URL"
_SUMMARY_LIMIT = 280


@dataclass(frozen=True, slots=True)
class FailureCategory:
    name: str
    retryable: bool
    hint: str
    tokens: tuple[str, ...] = ()

    def matches(self, lowered_output: str) -> bool:
        return any(token in lowered_output for token in self.tokens)


UNKNOWN_FAILURE = FailureCategory("unknown", False, "Unknown failure. Retry and check the URL.")

# First match wins.
FAILURE_CATEGORIES: tuple[FailureCategory, ...] = (
    FailureCategory(
        "unsupported",
        False,
        "No extractor can handle this URL. Check the link or update yt-dlp.",
        ("unsupported url", "no suitable extractor", "unable to extract"),
    ),
    FailureCategory(
        "rate_limit",
        True,
        "The site is rate-limiting requests. Lower the simultaneous downloads setting.",
        ("429", "too many requests", "rate limit", "try again later"),
    ),
    FailureCategory(
        "network",
        True,
        "Network issue detected. The download will be retried automatically.",
        (
            "timeout",
            "timed out",
            "connection reset",
            "connection aborted",
            "connection refused",
            "network is unreachable",
            "name resolution",
            "temporarily unavailable",
            "service unavailable",
        ),
    ),
    FailureCategory(
        "authentication",
        False,
        "This URL requires a login. Enable reading cookies from your browser.",
        ("sign in", "login required", "private video", "members-only", "cookies"),
    ),
    FailureCategory(
        "geo_restricted",
        False,
        "This content may be region restricted.",
        ("not available in your country", "geo restricted", "geo-restricted"),
    ),
    FailureCategory(
        "filesystem",
        False,
        "Download folder issue. Check write permissions and free space.",
        ("permission denied", "access is denied", "no space left", "disk full", "read-only file system"),
    ),
    FailureCategory(
        "dependency",
        False,
        "A downloader dependency is missing. Check the yt-dlp and FFmpeg paths.",
        ("ffmpeg not found", "ffprobe not found", "yt-dlp executable was not found", "no module named yt_dlp"),
    ),
)


def is_unsupported_url_error(output: str) -> bool:
    return UNSUPPORTED_URL_MARKER in str(output or "")


def classify_failure(output: str) -> FailureCategory:
    lowered = str(output or "").strip().lower()
    if lowered:
        for category in FAILURE_CATEGORIES:
            if category.matches(lowered):
                return category
    return UNKNOWN_FAILURE


def describe_failure(output: str) -> str:
    category = classify_failure(output)
    summary = " ".join(str(output or "").split())
    if len(summary) > _SUMMARY_LIMIT:
        summary = f"{summary[:_SUMMARY_LIMIT - 1]}..."
    label = category.name.upper()
    return f"{label}: {summary}" if summary else label
