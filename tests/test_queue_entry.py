from __future__ import annotations

from conftest import FakeProcess

from mediaqueue.core.models import DownloadStatus
from mediaqueue.core.queue_entry import QueueEntry
from mediaqueue.core.url_filters import GenericFilter


def _entry(**kwargs) -> QueueEntry:
    kwargs.setdefault("download_id", 7)
    kwargs.setdefault("original_url", "https://example.com/a")
    kwargs.setdefault("url", "https://example.com/a")
    kwargs.setdefault("url_filter", GenericFilter())
    kwargs.setdefault("downloaders", [])
    return QueueEntry(**kwargs)


def test_log_prefixes_download_id():
    lines = []
    entry = _entry(log_cb=lines.append)

    entry.log("hello")

    assert lines == ["[#7] hello"]


def test_update_status_notifies_callback():
    seen = []
    entry = _entry(status_cb=lambda item: seen.append((item.status, item.status_message)))

    entry.update_status(DownloadStatus.STARTING, "Starting")

    assert seen == [(DownloadStatus.STARTING, "Starting")]


def test_update_status_if_only_moves_from_expected_status():
    entry = _entry()
    entry.update_status(DownloadStatus.QUERYING, "Querying")

    assert entry.update_status_if(DownloadStatus.QUERYING, DownloadStatus.QUEUED, "Not started") is True
    assert entry.update_status_if(DownloadStatus.QUERYING, DownloadStatus.QUEUED, "again") is False
    assert entry.status_message == "Not started"


def test_close_sets_cancel_and_cannot_be_uncancelled():
    entry = _entry()
    entry.cancel()
    assert entry.clear_cancel() is True
    assert entry.cancel_requested is False

    entry.close()

    assert entry.closed is True
    assert entry.cancel_requested is True
    assert entry.clear_cancel() is False
    assert entry.cancel_requested is True


def test_retry_counter_round_trip():
    entry = _entry()

    assert entry.increment_retry_counter() == 1
    assert entry.increment_retry_counter() == 2
    entry.reset_retry_counter()

    assert entry.retry_counter == 0


def test_process_alive_follows_poll():
    entry = _entry()
    process = FakeProcess()
    entry.set_process(process)
    assert entry.is_process_alive() is True

    process.finish(0)

    assert entry.is_process_alive() is False


def test_tmp_directory_is_created_once_and_cleaned(tmp_path):
    entry = _entry()

    first = entry.ensure_tmp_directory(tmp_path)
    second = entry.ensure_tmp_directory(tmp_path)
    (first / "partial.part").write_text("x")

    assert first == second
    assert first.is_dir()
    entry.clean()
    assert entry.tmp_directory is None
    assert not first.exists()


def test_close_of_idle_entry_cleans_tmp_directory(tmp_path):
    entry = _entry()
    target = entry.ensure_tmp_directory(tmp_path)

    entry.close()

    assert not target.exists()


def test_close_of_running_entry_keeps_tmp_directory(tmp_path):
    entry = _entry()
    target = entry.ensure_tmp_directory(tmp_path)
    entry.set_running(True)

    entry.close()

    assert target.exists()


def test_reset_for_restart_forgets_process_and_files(tmp_path):
    entry = _entry()
    entry.set_process(FakeProcess())
    entry.media_files = [tmp_path / "video.mp4"]
    entry.last_error = "boom"

    entry.reset_for_restart()

    assert entry.process is None
    assert entry.media_files == []
    assert entry.last_error == "boom"


def test_delete_media_files(tmp_path):
    lines = []
    entry = _entry(log_cb=lines.append)
    kept = tmp_path / "video.mp4"
    kept.write_bytes(b"data")
    entry.media_files = [kept, tmp_path / "missing.mp3"]

    assert entry.delete_media_files() == 1
    assert not kept.exists()
    assert entry.media_files == []
    assert any("Deleted" in line for line in lines)
