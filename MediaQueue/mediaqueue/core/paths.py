from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path

from .config import APP_NAME


def _install_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[2]


def default_download_dir() -> Path:
    return Path.home() / "Downloads" / APP_NAME


@lru_cache(maxsize=1)
def runtime_storage_dir() -> Path:
    local_appdata = os.environ.get("LOCALAPPDATA")
    if local_appdata:
        target = Path(local_appdata).resolve() / APP_NAME
    else:
        target = Path.home() / f".{APP_NAME.lower()}"
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(
            f"Unable to create storage directory: {target}. "
            "Check folder permissions and available disk space."
        ) from exc
    return target


def scratch_dir() -> Path:
    return runtime_storage_dir() / "tmp"


def _local_binary_candidates(binary_name: str) -> Iterator[Path]:
    names = [binary_name]
    if os.name == "nt" and not binary_name.lower().endswith(".exe"):
        names.insert(0, f"{binary_name}.exe")
    seen: set[Path] = set()
    for base in (runtime_storage_dir(), _install_dir()):
        base = base.resolve()
        if base in seen:
            continue
        seen.add(base)
        for name in names:
            yield base / name


def resolve_binary(binary_name: str) -> str | None:
    """Find a bundled tool next to the app data or install dir, then on PATH."""
    for candidate in _local_binary_candidates(binary_name):
        if candidate.is_file():
            return str(candidate)
    found = shutil.which(binary_name)
    return str(Path(found).resolve()) if found else None
