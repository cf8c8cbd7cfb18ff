from __future__ import annotations

import threading

import requests

THUMBNAIL_TIMEOUT_SECONDS = 8.0
THUMBNAIL_MAX_BYTES = 5 * 1024 * 1024


def fetch_thumbnail(url: str, *, cancel_event: threading.Event | None = None) -> bytes:
    value = str(url or "").strip()
    if (not value) or (cancel_event is not None and cancel_event.is_set()):
        return b""

    with requests.get(value, stream=True, timeout=THUMBNAIL_TIMEOUT_SECONDS) as response:
        response.raise_for_status()
        content_type = str(response.headers.get("content-type") or "").lower()
        if content_type and ("image" not in content_type):
            return b""
        chunks: list[bytes] = []
        total = 0
        for chunk in response.iter_content(chunk_size=65536):
            if cancel_event is not None and cancel_event.is_set():
                return b""
            if not chunk:
                continue
            total += len(chunk)
            if total > THUMBNAIL_MAX_BYTES:
                return b""
            chunks.append(chunk)
    return b"".join(chunks)
