from __future__ import annotations

from typing import TYPE_CHECKING

from PySide6.QtCore import QObject, Signal

from ..core.models import PlaylistOption

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..core.download_manager import DownloadManager


class DownloadManagerBridge(QObject):
    queueChanged = Signal()
    logChanged = Signal(str)
    errorRaised = Signal(str, str)
    playlistPromptRequested = Signal(str, object)

    def __init__(self) -> None:
        super().__init__()
        self._manager: DownloadManager | None = None

    @property
    def manager(self) -> DownloadManager | None:
        return self._manager

    def attach(self, manager: DownloadManager, *, prompt_playlists: bool = True) -> None:
        self._manager = manager
        manager.register_listener(self._on_queue_changed)
        if prompt_playlists:
            manager.set_playlist_prompt(self._on_playlist_prompt)

    def detach(self) -> None:
        manager = self._manager
        if manager is None:
            return
        manager.unregister_listener(self._on_queue_changed)
        manager.set_playlist_prompt(None)
        self._manager = None

    def emit_log(self, message: str) -> None:
        self.logChanged.emit(str(message or ""))

    def emit_error(self, source: str, exc: Exception) -> None:
        self.errorRaised.emit(str(source or "global"), str(exc))

    def _on_queue_changed(self) -> None:
        self.queueChanged.emit()

    def _on_playlist_prompt(
        self,
        playlist_url: str,
        resolve: Callable[[PlaylistOption | None, bool], None],
    ) -> None:
        self.playlistPromptRequested.emit(str(playlist_url or ""), resolve)
