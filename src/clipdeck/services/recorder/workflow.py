"""State-machine based recording workflow.

Phases::

    idle -> recording <-> paused -> awaiting_metadata -> uploading -> idle
                                           ^                  |
                                           +---- failure -----+

``cancel()`` returns to idle from every other phase. The countdown
expiry and a manual ``stop()`` share one guarded ``_finalize()``; the
later caller finds the phase already moved on and does nothing.

Every asynchronous completion (device open, upload) compares the
generation it started under with the current one, so a cancel that
happened meanwhile always wins.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import (
    ClipDeckError,
    DeviceUnavailableError,
    EmptyTitleError,
    UploadFailedError,
)
from clipdeck.core.models import Clip, OperationResult, RecordingBuffer, WorkflowPhase
from clipdeck.services.audio.capture import CaptureSession
from clipdeck.services.audio.devices import SoundDeviceInput
from clipdeck.services.audio.visualizer import Visualizer
from clipdeck.services.recorder.countdown import Countdown
from clipdeck.services.recorder.gateway import UploadGateway

logger = logging.getLogger(__name__)

StateCallback = Callable[[WorkflowPhase, WorkflowPhase], None]
TickCallback = Callable[[int], None]
ErrorCallback = Callable[[ClipDeckError], None]
UploadedCallback = Callable[[Clip | None], Any]


def _default_session() -> CaptureSession:
    return CaptureSession(SoundDeviceInput())


class RecorderWorkflow:
    """Orchestrates capture, countdown, labelling, and upload for one clip at a time.

    Args:
        gateway: Uploads finalized recordings.
        session_factory: Builds a fresh ``CaptureSession`` per recording
            (defaults to one on the system microphone).
        visualizer: Optional render loop bound to the active session.
        max_duration: Recording limit in seconds (defaults to settings).
        tick_interval: Countdown tick cadence (defaults to settings).
        clock: Monotonic time source for the countdown.
        on_state_change: Called with ``(from_phase, to_phase)``.
        on_tick: Called with the whole seconds left while recording.
        on_error: Called with every error the workflow reports.
        on_uploaded: Called (and awaited if async) after a successful upload,
            typically to refresh the playlist.
    """

    def __init__(
        self,
        gateway: UploadGateway,
        session_factory: Callable[[], CaptureSession] | None = None,
        visualizer: Visualizer | None = None,
        max_duration: float | None = None,
        tick_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateCallback | None = None,
        on_tick: TickCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_uploaded: UploadedCallback | None = None,
    ) -> None:
        settings = get_settings()
        self._gateway = gateway
        self._session_factory = session_factory or _default_session
        self._visualizer = visualizer
        self._on_state_change = on_state_change
        self._on_tick = on_tick
        self._on_error = on_error
        self._on_uploaded = on_uploaded

        self._countdown = Countdown(
            duration=max_duration or settings.max_duration_seconds,
            on_expire=self._handle_expired,
            on_tick=self._handle_tick,
            tick_interval=tick_interval or settings.countdown_tick_seconds,
            clock=clock,
        )

        self._phase = WorkflowPhase.idle
        self._generation = 0
        self._session: CaptureSession | None = None
        self._buffer: RecordingBuffer | None = None
        self._title = ""
        self._tags = ""
        self._upload_task: asyncio.Future | None = None
        self.last_error: ClipDeckError | None = None

    # -- state --

    @property
    def phase(self) -> WorkflowPhase:
        return self._phase

    @property
    def max_duration(self) -> float:
        return self._countdown.duration

    @property
    def time_left(self) -> int:
        return self._countdown.time_left

    @property
    def elapsed(self) -> float:
        """Seconds spent recording so far, paused intervals excluded."""
        return self._countdown.elapsed

    @property
    def session(self) -> CaptureSession | None:
        return self._session

    @property
    def pending_title(self) -> str:
        return self._title

    @property
    def pending_tags(self) -> str:
        return self._tags

    @property
    def pending_buffer(self) -> RecordingBuffer | None:
        """The finalized recording; present only while awaiting metadata."""
        if self._phase is WorkflowPhase.awaiting_metadata:
            return self._buffer
        return None

    @property
    def can_submit(self) -> bool:
        return self._phase is WorkflowPhase.awaiting_metadata and bool(self._title.strip())

    def set_title(self, title: str) -> None:
        if self._phase is WorkflowPhase.uploading:
            logger.warning("set_title() ignored while uploading")
            return
        self._title = title

    def set_tags(self, tags: str) -> None:
        if self._phase is WorkflowPhase.uploading:
            logger.warning("set_tags() ignored while uploading")
            return
        self._tags = tags

    # -- transitions --

    async def start(self) -> OperationResult:
        """Open the microphone and begin recording.

        A no-op unless idle. Device failures leave the workflow idle and
        are returned (and reported through ``on_error``).
        """
        if self._phase is not WorkflowPhase.idle or self._session is not None:
            logger.warning("start() ignored in phase %s", self._phase)
            return OperationResult.ignored()

        self._generation += 1
        generation = self._generation
        self._clear_pending()
        self._countdown.reset()

        session = self._session_factory()
        self._session = session
        try:
            opened = await session.open()
        except DeviceUnavailableError as exc:
            if self._session is session:
                self._session = None
            return self._fail(exc)

        if not opened or generation != self._generation or self._session is not session:
            logger.info("Recording start superseded while the microphone was opening")
            session.cancel()
            return OperationResult.ignored()

        try:
            session.start()
        except DeviceUnavailableError as exc:
            self._session = None
            return self._fail(exc)

        self._countdown.start()
        self._transition(WorkflowPhase.recording)
        if self._visualizer is not None:
            self._visualizer.start(session)
        logger.info("Recording started (limit %ss)", self.max_duration)
        return OperationResult.success()

    def pause(self) -> bool:
        if self._phase is not WorkflowPhase.recording or self._session is None:
            logger.warning("pause() ignored in phase %s", self._phase)
            return False
        if not self._countdown.pause():
            # The limit is reached; expiry finalizes on its own
            return False
        self._session.pause()
        self._transition(WorkflowPhase.paused)
        return True

    def resume(self) -> bool:
        if self._phase is not WorkflowPhase.paused or self._session is None:
            logger.warning("resume() ignored in phase %s", self._phase)
            return False
        self._session.resume()
        self._countdown.resume()
        self._transition(WorkflowPhase.recording)
        return True

    def stop(self) -> bool:
        """Finalize the recording and wait for a title."""
        return self._finalize("stopped")

    async def submit(self, title: str | None = None, tags: str | None = None) -> OperationResult:
        """Upload the pending recording.

        Args:
            title: Replaces the pending title when given.
            tags: Replaces the pending tags when given.

        Returns:
            Success with the created clip (or None for a bare ack);
            ``EmptyTitleError`` without any network call when the title
            is blank; ``UploadFailedError`` with buffer and title kept.
        """
        if self._phase is not WorkflowPhase.awaiting_metadata:
            logger.warning("submit() ignored in phase %s", self._phase)
            return OperationResult.ignored()
        if title is not None:
            self._title = title
        if tags is not None:
            self._tags = tags
        if not self._title.strip():
            self.last_error = EmptyTitleError()
            return OperationResult.failure(self.last_error)

        generation = self._generation
        self._transition(WorkflowPhase.uploading)
        task = asyncio.ensure_future(self._gateway.submit(self._buffer, self._title, self._tags))
        self._upload_task = task
        try:
            clip = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return OperationResult.ignored()
            # The caller itself was cancelled; never leave the phase at uploading
            self._upload_task = None
            self._transition(WorkflowPhase.awaiting_metadata)
            raise
        except Exception as exc:
            if generation != self._generation:
                return OperationResult.ignored()
            self._upload_task = None
            if isinstance(exc, UploadFailedError):
                error = exc
            else:
                error = UploadFailedError(f"Upload failed: {exc}")
            self._transition(WorkflowPhase.awaiting_metadata)
            return self._fail(error)

        if generation != self._generation:
            return OperationResult.ignored()
        self._upload_task = None
        logger.info("Uploaded %r", self._title)
        self._reset()
        await self._notify_uploaded(clip)
        return OperationResult.success(clip)

    def cancel(self) -> bool:
        """Discard everything and return to idle from any phase."""
        if self._phase is WorkflowPhase.idle and self._session is None:
            return False

        self._generation += 1
        if self._visualizer is not None:
            self._visualizer.stop()
        session, self._session = self._session, None
        if session is not None:
            session.cancel()
        task, self._upload_task = self._upload_task, None
        if task is not None and not task.done():
            task.cancel()
        self._reset()
        logger.info("Recording cancelled")
        return True

    # -- internals --

    def _finalize(self, reason: str) -> bool:
        """Single exit from recording/paused, shared by stop() and expiry."""
        if self._phase not in (WorkflowPhase.recording, WorkflowPhase.paused):
            return False

        session, self._session = self._session, None
        self._countdown.freeze()
        if self._visualizer is not None:
            self._visualizer.stop()

        try:
            buffer = session.stop() if session is not None else None
        except Exception as exc:
            logger.exception("Failed to finalize recording")
            self._reset()
            self._fail(
                ClipDeckError(f"Failed to finalize recording: {exc}", code="FINALIZE_FAILED")
            )
            return False
        if buffer is None:
            self._reset()
            self._fail(ClipDeckError("Recording produced no audio", code="FINALIZE_FAILED"))
            return False

        self._buffer = buffer
        self._transition(WorkflowPhase.awaiting_metadata)
        logger.info(
            "Recording %s after %.1fs: %d chunks, %d bytes",
            reason,
            buffer.duration,
            buffer.chunk_count,
            buffer.size,
        )
        return True

    def _handle_expired(self) -> None:
        self._finalize("reached the time limit")

    def _handle_tick(self, time_left: int) -> None:
        if self._on_tick is not None:
            self._on_tick(time_left)

    def _clear_pending(self) -> None:
        self._buffer = None
        self._title = ""
        self._tags = ""

    def _reset(self) -> None:
        self._clear_pending()
        self._countdown.reset()
        self._transition(WorkflowPhase.idle)

    def _fail(self, error: ClipDeckError) -> OperationResult:
        self.last_error = error
        logger.warning("%s: %s", error.code, error.detail)
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("Error callback failed (non-fatal)")
        return OperationResult.failure(error)

    async def _notify_uploaded(self, clip: Clip | None) -> None:
        if self._on_uploaded is None:
            return
        try:
            result = self._on_uploaded(clip)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Upload notification failed (non-fatal)", exc_info=True)

    def _transition(self, to_phase: WorkflowPhase) -> None:
        from_phase = self._phase
        if from_phase == to_phase:
            return
        self._phase = to_phase
        logger.debug("Workflow %s -> %s", from_phase, to_phase)
        if self._on_state_change is not None:
            self._on_state_change(from_phase, to_phase)
