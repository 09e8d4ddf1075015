"""Playlist of uploaded clips with search, pagination, and exclusive playback.

``playing_id`` is the single owner of the output: starting a clip stops
and rewinds whichever clip held it before, synchronously, before the
new one is even loaded. Player handles are created lazily per clip and
kept until the clip disappears from the listing.
"""

import logging
import math
from collections.abc import Callable
from functools import partial

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import (
    ClipDeckError,
    DeleteFailedError,
    FetchFailedError,
    PlaybackFailedError,
)
from clipdeck.core.models import Clip, OperationResult, PlaylistView
from clipdeck.services.audio.base import BasePlayback
from clipdeck.services.audio.player import SoundDevicePlayback
from clipdeck.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)

PlaybackFactory = Callable[[Clip], BasePlayback]


class PlaylistStore:
    """Client-side view over the backend's clip listing.

    Args:
        storage: Backend used to list, delete, and stream clips.
        playback_factory: Builds a player for one clip (defaults to
            ``SoundDevicePlayback`` over ``storage``).
        page_size: Clips per page (defaults to settings).
    """

    def __init__(
        self,
        storage: BaseStorage,
        playback_factory: PlaybackFactory | None = None,
        page_size: int | None = None,
    ) -> None:
        self._storage = storage
        self._playback_factory = playback_factory or partial(
            SoundDevicePlayback, storage=storage
        )
        self._page_size = page_size or get_settings().page_size
        if self._page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self._page_size}")

        self._items: list[Clip] = []
        self._query = ""
        self._page = 1
        self._playing_id: str | None = None
        self._players: dict[str, BasePlayback] = {}
        # Identifies the latest toggle_play; a slower load for an older one is dropped
        self._play_token: object | None = None

    # -- state --

    @property
    def items(self) -> list[Clip]:
        return list(self._items)

    @property
    def query(self) -> str:
        return self._query

    @property
    def page(self) -> int:
        return self._page

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def playing_id(self) -> str | None:
        return self._playing_id

    @property
    def filtered(self) -> list[Clip]:
        """Items whose title contains the query, case-insensitively."""
        needle = self._query.strip().lower()
        if not needle:
            return list(self._items)
        return [clip for clip in self._items if needle in clip.title.lower()]

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(len(self.filtered) / self._page_size))

    @property
    def visible(self) -> list[Clip]:
        start = (self._page - 1) * self._page_size
        return self.filtered[start : start + self._page_size]

    def view(self) -> PlaylistView:
        filtered = self.filtered
        page_count = max(1, math.ceil(len(filtered) / self._page_size))
        start = (self._page - 1) * self._page_size
        return PlaylistView(
            items=filtered[start : start + self._page_size],
            page=self._page,
            page_count=page_count,
            total=len(filtered),
            query=self._query,
            playing_id=self._playing_id,
        )

    def get(self, clip_id: str) -> Clip | None:
        for clip in self._items:
            if clip.id == clip_id:
                return clip
        return None

    def player(self, clip_id: str) -> BasePlayback | None:
        """The player handle for ``clip_id``, if one has been created."""
        return self._players.get(clip_id)

    # -- listing --

    async def refresh(self) -> OperationResult:
        """Replace the listing with the backend's current clips.

        On failure the previous listing, page, and playback are kept.
        """
        try:
            clips = await self._storage.list_clips()
        except ClipDeckError as exc:
            error = (
                exc
                if isinstance(exc, FetchFailedError)
                else FetchFailedError(
                    exc.detail, status_code=exc.status_code, category=exc.category
                )
            )
            logger.warning("Playlist refresh failed: %s", error.detail)
            return OperationResult.failure(error)

        self._items = list(clips)
        current = {clip.id for clip in self._items}
        for clip_id in [cid for cid in self._players if cid not in current]:
            self._drop_player(clip_id)
        if self._playing_id is not None and self._playing_id not in current:
            self._playing_id = None
            self._play_token = None
        self._clamp_page()
        logger.debug("Playlist refreshed: %d clips", len(self._items))
        return OperationResult.success(self.view())

    def set_query(self, query: str) -> None:
        self._query = query
        self._page = 1

    def set_page(self, page: int) -> int:
        """Move to ``page`` clamped to ``[1, page_count]``; returns the page set."""
        self._page = min(max(1, page), self.page_count)
        return self._page

    # -- playback --

    async def toggle_play(self, clip_id: str) -> OperationResult:
        """Play ``clip_id``, or pause it when it is the one playing.

        Starting a clip stops and rewinds only the clip that is currently
        playing. A clip paused by an earlier toggle is no longer playing,
        so it keeps its position and resumes from there next time.

        Returns:
            Success with the resulting playing id (None after a pause);
            ``PlaybackFailedError`` when the clip cannot be loaded or played.
        """
        clip = self.get(clip_id)
        if clip is None:
            logger.warning("toggle_play(): unknown clip %s", clip_id)
            return OperationResult.ignored()

        if self._playing_id == clip_id:
            self._play_token = None
            self._playing_id = None
            handle = self._players.get(clip_id)
            if handle is not None:
                handle.pause()
            return OperationResult.success(None)

        self._stop_current()
        token = object()
        self._play_token = token
        self._playing_id = clip_id

        handle = self._players.get(clip_id)
        if handle is None:
            handle = self._playback_factory(clip)
            handle.on_finished = partial(self._handle_finished, clip_id, handle)
            self._players[clip_id] = handle

        try:
            await handle.load()
        except PlaybackFailedError as exc:
            return self._playback_failed(clip_id, handle, token, exc)

        if self._play_token is not token:
            # Another toggle, remove, or refresh superseded this one while loading
            return OperationResult.ignored()

        try:
            handle.play()
        except PlaybackFailedError as exc:
            return self._playback_failed(clip_id, handle, token, exc)
        logger.info("Playing %r", clip.title)
        return OperationResult.success(clip_id)

    def stop_all(self) -> None:
        self._stop_current()

    # -- deletion --

    async def remove(self, clip_id: str) -> OperationResult:
        """Delete ``clip_id`` on the backend, then drop it locally.

        A failed delete leaves the listing and playback untouched.
        """
        try:
            await self._storage.delete_clip(clip_id)
        except ClipDeckError as exc:
            error = (
                exc
                if isinstance(exc, DeleteFailedError)
                else DeleteFailedError(
                    exc.detail, status_code=exc.status_code, category=exc.category
                )
            )
            logger.warning("Delete of %s failed: %s", clip_id, error.detail)
            return OperationResult.failure(error)

        self._items = [clip for clip in self._items if clip.id != clip_id]
        if self._playing_id == clip_id:
            self._playing_id = None
            self._play_token = None
        self._drop_player(clip_id)
        self._clamp_page()
        logger.info("Deleted clip %s", clip_id)
        return OperationResult.success(clip_id)

    def close(self) -> None:
        """Stop playback and release every player."""
        self._playing_id = None
        self._play_token = None
        for clip_id in list(self._players):
            self._drop_player(clip_id)

    # -- internals --

    def _stop_current(self) -> None:
        current, self._playing_id = self._playing_id, None
        self._play_token = None
        if current is None:
            return
        handle = self._players.get(current)
        if handle is not None:
            handle.stop()

    def _handle_finished(self, clip_id: str, handle: BasePlayback) -> None:
        # Ignore a late end-of-stream from a handle that no longer owns the slot
        if self._players.get(clip_id) is not handle or self._playing_id != clip_id:
            return
        self._playing_id = None
        self._play_token = None
        logger.debug("Clip %s finished playing", clip_id)

    def _playback_failed(
        self,
        clip_id: str,
        handle: BasePlayback,
        token: object,
        error: PlaybackFailedError,
    ) -> OperationResult:
        logger.warning("Playback of %s failed: %s", clip_id, error.detail)
        if self._players.get(clip_id) is handle:
            self._drop_player(clip_id)
        if self._play_token is token:
            self._play_token = None
            self._playing_id = None
        return OperationResult.failure(error)

    def _drop_player(self, clip_id: str) -> None:
        handle = self._players.pop(clip_id, None)
        if handle is None:
            return
        handle.on_finished = None
        try:
            handle.close()
        except Exception:
            logger.exception("Failed to release player for clip %s", clip_id)

    def _clamp_page(self) -> None:
        self._page = min(max(1, self._page), self.page_count)
