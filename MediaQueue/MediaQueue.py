"""
MediaQueue - Queued media downloads driven by external downloader tools

This program is licensed under the GNU General Public License v3.0
See the LICENSE file in the project root for the full license text.

SPDX-License-Identifier: GPL-3.0-or-later
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from mediaqueue.controller import DownloadManagerBridge, classify_failure
from mediaqueue.core.config import APP_NAME, APP_VERSION, load_config
from mediaqueue.core.download_manager import DownloadManager
from mediaqueue.core.models import DownloadStatus, PlaylistOption
from mediaqueue.core.url_utils import iter_url_lines

IDLE_CHECK_INTERVAL_MS = 500


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Queue media URLs and download them with yt-dlp.")
    parser.add_argument("urls", nargs="*", help="Media URLs to capture.")
    parser.add_argument("--file", type=Path, help="Read URLs from a text file, one per line.")
    parser.add_argument("--output", help="Downloads directory (overrides the saved setting).")
    parser.add_argument("--max-downloads", type=int, help="Maximum simultaneous downloads.")
    parser.add_argument("--audio-only", action="store_true", help="Download audio only.")
    parser.add_argument(
        "--playlist",
        choices=[PlaylistOption.DOWNLOAD_PLAYLIST.value, PlaylistOption.DOWNLOAD_SINGLE.value],
        help="How to treat playlist links.",
    )
    parser.add_argument("--debug", action="store_true", help="Print debug output.")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser


def _collect_urls(args: argparse.Namespace) -> list[str]:
    urls = list(iter_url_lines("\n".join(args.urls)))
    if args.file is not None:
        urls.extend(iter_url_lines(args.file.read_text(encoding="utf-8")))
    return urls


def _print_line(message: str) -> None:
    print(message, flush=True)


def _print_error(source: str, message: str) -> None:
    print(f"ERROR [{source}]: {message}", file=sys.stderr, flush=True)


def _print_summary(manager: DownloadManager) -> None:
    snapshot = manager.snapshot()
    _print_line(f"Completed: {len(snapshot.completed)}  Failed: {len(snapshot.failed)}")
    for entry in snapshot.failed:
        if entry.status == DownloadStatus.NO_METHOD:
            _print_line(f"  {entry.url}: {entry.status_message}")
            continue
        _print_line(f"  {entry.url}: {entry.status_message}")
        _print_line(f"    {classify_failure(entry.status_message).hint}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    urls = _collect_urls(args)
    if not urls:
        _print_error("input", "No URLs to download.")
        return 1

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)
    app.setOrganizationName(APP_NAME)

    config = load_config()
    if args.output:
        config.downloads_path = str(Path(args.output).expanduser())
    if args.max_downloads is not None:
        config.max_simultaneous_downloads = max(1, int(args.max_downloads))
    if args.audio_only:
        config.download_video = False
        config.download_audio = True
    if args.debug:
        config.debug_mode = True

    bridge = DownloadManagerBridge()
    bridge.logChanged.connect(_print_line)
    bridge.errorRaised.connect(_print_error)
    manager = DownloadManager(
        config,
        log_cb=bridge.emit_log,
        exception_handler=bridge.emit_error,
    )
    bridge.attach(manager, prompt_playlists=False)

    try:
        manager.unblock()
        captured = 0
        for url in urls:
            if manager.capture_url(url, True, args.playlist).result():
                captured += 1
        if captured == 0:
            _print_error("input", "None of the URLs could be captured.")
            return 1

        manager.start_downloads()

        def quit_when_idle() -> None:
            if (not manager.is_running()) and manager.downloads_running == 0:
                app.quit()

        idle_timer = QTimer()
        idle_timer.setInterval(IDLE_CHECK_INTERVAL_MS)
        idle_timer.timeout.connect(quit_when_idle)
        idle_timer.start()
        app.exec()
        idle_timer.stop()
        manager.wait_for_listeners(2.0)
        _print_summary(manager)
        return 0 if manager.failed_count == 0 else 2
    finally:
        manager.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
