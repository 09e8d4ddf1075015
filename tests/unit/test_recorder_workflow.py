"""Unit tests for the RecorderWorkflow state machine.

Capture runs on the fake microphone, uploads go to a mocked storage
backend, and the countdown is driven by a manual clock except where the
real expiry path is under test.
"""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from clipdeck.core.exceptions import (
    ClipDeckError,
    DeviceUnavailableError,
    EmptyTitleError,
    UploadFailedError,
)
from clipdeck.core.models import Clip, WorkflowPhase
from clipdeck.services.audio.capture import CaptureSession, get_device_owner
from clipdeck.services.recorder.gateway import UploadGateway
from clipdeck.services.recorder.workflow import RecorderWorkflow

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def transitions():
    return []


@pytest.fixture
async def workflow(fake_device, mock_storage, clock, transitions):
    """A workflow on the fake microphone with a 30 s limit and a manual clock."""
    wf = RecorderWorkflow(
        UploadGateway(mock_storage),
        session_factory=lambda: CaptureSession(fake_device),
        max_duration=30,
        tick_interval=60.0,
        clock=clock,
        on_state_change=lambda a, b: transitions.append((a, b)),
        on_error=MagicMock(),
        on_uploaded=AsyncMock(),
    )
    yield wf
    wf.cancel()


async def _record(workflow, device, block, blocks=2):
    """Start recording and push ``blocks`` blocks through the microphone."""
    result = await workflow.start()
    assert result.ok
    for _ in range(blocks):
        device.emit(block)


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


class TestStart:
    """Verify recording start and device failures."""

    async def test_start_enters_recording(self, workflow, transitions):
        result = await workflow.start()
        assert result.ok
        assert workflow.phase is WorkflowPhase.recording
        assert workflow.time_left == 30
        assert transitions == [(WorkflowPhase.idle, WorkflowPhase.recording)]

    async def test_start_when_not_idle_is_ignored(self, workflow):
        await workflow.start()
        result = await workflow.start()
        assert result.ok is False
        assert result.error is None

    async def test_denied_device_stays_idle(self, make_device, mock_storage):
        """Permission denial surfaces as an error and the workflow stays idle."""
        on_error = MagicMock()
        device = make_device(open_error=DeviceUnavailableError("Permission denied"))
        wf = RecorderWorkflow(
            UploadGateway(mock_storage),
            session_factory=lambda: CaptureSession(device),
            on_error=on_error,
        )

        result = await wf.start()

        assert isinstance(result.error, DeviceUnavailableError)
        assert wf.phase is WorkflowPhase.idle
        assert wf.session is None
        assert wf.last_error is result.error
        on_error.assert_called_once_with(result.error)
        assert get_device_owner() is None

    async def test_device_in_use_is_reported(self, workflow, make_device):
        other = CaptureSession(make_device())
        await other.open()

        result = await workflow.start()

        assert isinstance(result.error, DeviceUnavailableError)
        assert workflow.phase is WorkflowPhase.idle

    async def test_start_clears_leftovers(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.stop()
        workflow.set_title("old")
        workflow.set_tags("old")
        workflow.cancel()

        await workflow.start()
        assert workflow.pending_title == ""
        assert workflow.pending_tags == ""
        assert workflow.pending_buffer is None

    async def test_limit_defaults_to_settings(self, fake_device, mock_storage, monkeypatch):
        monkeypatch.setenv("MAX_DURATION_SECONDS", "12")
        wf = RecorderWorkflow(
            UploadGateway(mock_storage), session_factory=lambda: CaptureSession(fake_device)
        )
        assert wf.max_duration == 12
        assert wf.time_left == 12


# ---------------------------------------------------------------------------
# Pause / resume / countdown
# ---------------------------------------------------------------------------


class TestPauseResume:
    """Verify pausing freezes both capture and countdown."""

    async def test_pause_excludes_time(self, workflow, clock):
        """elapsed only counts time spent recording."""
        await workflow.start()
        clock.advance(5)
        assert workflow.pause() is True
        clock.advance(60)
        assert workflow.resume() is True
        clock.advance(3)

        assert workflow.elapsed == pytest.approx(8)
        assert workflow.time_left == 22

    async def test_paused_audio_is_not_recorded(self, workflow, fake_device, tone):
        await workflow.start()
        fake_device.emit(tone())
        workflow.pause()
        fake_device.emit(tone())
        workflow.resume()
        fake_device.emit(tone())
        workflow.stop()

        assert workflow.pending_buffer.chunk_count == 2

    async def test_pause_outside_recording_is_noop(self, workflow):
        assert workflow.pause() is False
        assert workflow.resume() is False
        assert workflow.phase is WorkflowPhase.idle

    async def test_pause_refused_at_zero(self, workflow, clock):
        """When time is up, pause() loses to the pending expiry."""
        await workflow.start()
        clock.advance(30)
        assert workflow.pause() is False
        assert workflow.phase is WorkflowPhase.recording

    async def test_ticks_are_forwarded(self, fake_device, mock_storage):
        ticks = []
        wf = RecorderWorkflow(
            UploadGateway(mock_storage),
            session_factory=lambda: CaptureSession(fake_device),
            max_duration=5,
            tick_interval=0.01,
            on_tick=ticks.append,
        )
        await wf.start()
        await asyncio.sleep(0.05)
        wf.cancel()

        assert ticks
        assert ticks[0] == 5


# ---------------------------------------------------------------------------
# Stop / expiry
# ---------------------------------------------------------------------------


class TestFinalize:
    """Verify manual stop and automatic expiry share one finalization."""

    async def test_stop_awaits_metadata(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone(800))
        assert workflow.stop() is True

        assert workflow.phase is WorkflowPhase.awaiting_metadata
        buffer = workflow.pending_buffer
        assert buffer.frames == 1600
        assert buffer.chunk_count == 2
        assert fake_device.closed is True
        assert get_device_owner() is None

    async def test_stop_from_paused(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.pause()
        assert workflow.stop() is True
        assert workflow.phase is WorkflowPhase.awaiting_metadata

    async def test_second_stop_is_noop(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.stop()
        buffer = workflow.pending_buffer
        assert workflow.stop() is False
        assert workflow.pending_buffer is buffer

    async def test_stop_when_idle_is_noop(self, workflow, transitions):
        assert workflow.stop() is False
        assert transitions == []

    async def test_expiry_auto_stops(self, fake_device, mock_storage, tone):
        """Reaching time_left == 0 finalizes without any user action."""
        wf = RecorderWorkflow(
            UploadGateway(mock_storage),
            session_factory=lambda: CaptureSession(fake_device),
            max_duration=0.05,
            tick_interval=0.01,
        )
        await _record(wf, fake_device, tone())
        await asyncio.sleep(0.2)

        assert wf.phase is WorkflowPhase.awaiting_metadata
        assert wf.time_left == 0
        assert wf.pending_buffer.chunk_count == 2
        assert get_device_owner() is None

    async def test_expiry_matches_manual_stop(self, fake_device, mock_storage, workflow, tone):
        """The buffer an expiry produces is the one stop() would have produced."""
        await _record(workflow, fake_device, tone(400), blocks=3)
        workflow.stop()
        manual = workflow.pending_buffer
        workflow.cancel()

        wf = RecorderWorkflow(
            UploadGateway(mock_storage),
            session_factory=lambda: CaptureSession(fake_device),
            max_duration=0.05,
            tick_interval=0.01,
        )
        await _record(wf, fake_device, tone(400), blocks=3)
        await asyncio.sleep(0.2)
        expired = wf.pending_buffer

        assert expired.data == manual.data
        assert expired.chunk_count == manual.chunk_count

    async def test_expiry_after_stop_is_noop(self, workflow, fake_device, tone, transitions):
        await _record(workflow, fake_device, tone())
        workflow.stop()
        count = len(transitions)
        workflow._handle_expired()

        assert workflow.phase is WorkflowPhase.awaiting_metadata
        assert len(transitions) == count

    async def test_finalize_failure_resets(self, workflow, fake_device):
        await workflow.start()

        def broken_stop():
            raise RuntimeError("driver crashed")

        fake_device.stop = broken_stop
        assert workflow.stop() is False

        assert workflow.phase is WorkflowPhase.idle
        assert isinstance(workflow.last_error, ClipDeckError)
        assert get_device_owner() is None


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


@pytest.fixture
async def stopped(workflow, fake_device, tone):
    """A workflow holding a finalized recording, awaiting its title."""
    await _record(workflow, fake_device, tone())
    workflow.stop()
    return workflow


class TestSubmit:
    """Verify labelling and upload."""

    @pytest.mark.parametrize("title", ["", "   "])
    async def test_empty_title_rejected_without_network(self, stopped, mock_storage, title):
        result = await stopped.submit(title)

        assert isinstance(result.error, EmptyTitleError)
        assert stopped.phase is WorkflowPhase.awaiting_metadata
        assert stopped.pending_buffer is not None
        mock_storage.upload_clip.assert_not_called()

    async def test_can_submit_tracks_title(self, stopped):
        assert stopped.can_submit is False
        stopped.set_title("Standup")
        assert stopped.can_submit is True

    async def test_success_resets_and_notifies(self, stopped, mock_storage, clock):
        clip = Clip(id="42", title="Standup")
        mock_storage.upload_clip.return_value = clip
        clock.advance(10)

        result = await stopped.submit("Standup", "work, daily")

        assert result.ok
        assert result.value is clip
        assert stopped.phase is WorkflowPhase.idle
        assert stopped.pending_buffer is None
        assert stopped.pending_title == ""
        assert stopped.time_left == 30
        stopped._on_uploaded.assert_awaited_once_with(clip)

        buffer, metadata = mock_storage.upload_clip.call_args.args
        assert buffer.data[:4] == b"RIFF"
        assert metadata.title == "Standup"
        assert metadata.tags == "work, daily"

    async def test_submit_uses_pending_metadata(self, stopped, mock_storage):
        stopped.set_title("Notes")
        stopped.set_tags("a,b")
        await stopped.submit()

        _, metadata = mock_storage.upload_clip.call_args.args
        assert (metadata.title, metadata.tags) == ("Notes", "a,b")

    async def test_failure_keeps_buffer_and_title(self, stopped, mock_storage, transitions):
        mock_storage.upload_clip.side_effect = UploadFailedError(
            "boom", status_code=500, category="http"
        )
        buffer = stopped.pending_buffer

        result = await stopped.submit("Standup")

        assert isinstance(result.error, UploadFailedError)
        assert result.error.status_code == 500
        assert stopped.phase is WorkflowPhase.awaiting_metadata
        assert stopped.pending_buffer is buffer
        assert stopped.pending_title == "Standup"
        assert transitions[-2:] == [
            (WorkflowPhase.awaiting_metadata, WorkflowPhase.uploading),
            (WorkflowPhase.uploading, WorkflowPhase.awaiting_metadata),
        ]
        stopped._on_error.assert_called_once_with(result.error)
        assert mock_storage.upload_clip.call_count == 1

    async def test_retry_after_failure(self, stopped, mock_storage):
        mock_storage.upload_clip.side_effect = UploadFailedError("boom", status_code=500)
        await stopped.submit("Standup")
        mock_storage.upload_clip.side_effect = None
        mock_storage.upload_clip.return_value = Clip(id="1", title="Standup")

        result = await stopped.submit()

        assert result.ok
        assert stopped.phase is WorkflowPhase.idle

    async def test_unexpected_error_becomes_upload_failure(self, stopped, mock_storage):
        mock_storage.upload_clip.side_effect = RuntimeError("socket closed")
        result = await stopped.submit("Standup")

        assert isinstance(result.error, UploadFailedError)
        assert stopped.phase is WorkflowPhase.awaiting_metadata

    async def test_notification_failure_is_not_fatal(self, stopped):
        stopped._on_uploaded.side_effect = RuntimeError("refresh failed")
        result = await stopped.submit("Standup")

        assert result.ok
        assert stopped.phase is WorkflowPhase.idle

    async def test_submit_outside_awaiting_metadata_is_ignored(self, workflow, mock_storage):
        result = await workflow.submit("Standup")
        assert result.ok is False
        assert result.error is None
        mock_storage.upload_clip.assert_not_called()

    async def test_metadata_locked_while_uploading(self, stopped, mock_storage):
        release = asyncio.Event()

        async def slow_upload(buffer, metadata):
            await release.wait()

        mock_storage.upload_clip.side_effect = slow_upload
        task = asyncio.create_task(stopped.submit("Standup"))
        await asyncio.sleep(0.01)

        assert stopped.phase is WorkflowPhase.uploading
        stopped.set_title("changed")
        assert stopped.pending_title == "Standup"
        release.set()
        assert (await task).ok


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


class TestCancel:
    """Verify cancel returns to idle from every phase."""

    async def test_cancel_idle_is_noop(self, workflow, transitions):
        assert workflow.cancel() is False
        assert transitions == []

    async def test_cancel_while_recording(self, workflow, fake_device, tone, clock):
        await _record(workflow, fake_device, tone())
        clock.advance(7)
        assert workflow.cancel() is True

        assert workflow.phase is WorkflowPhase.idle
        assert workflow.time_left == 30
        assert fake_device.closed is True
        assert get_device_owner() is None

    async def test_cancel_while_paused(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.pause()
        workflow.cancel()
        assert workflow.phase is WorkflowPhase.idle
        assert get_device_owner() is None

    async def test_cancel_awaiting_metadata_discards_everything(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.stop()
        workflow.set_title("draft")
        workflow.set_tags("x")
        workflow.cancel()

        assert workflow.phase is WorkflowPhase.idle
        assert workflow.pending_buffer is None
        assert workflow.pending_title == ""
        assert workflow.pending_tags == ""

    async def test_cancel_during_upload(self, workflow, fake_device, tone, mock_storage):
        """An in-flight upload is abandoned and its result ignored."""
        started = asyncio.Event()

        async def hanging_upload(buffer, metadata):
            started.set()
            await asyncio.sleep(10)

        mock_storage.upload_clip.side_effect = hanging_upload
        await _record(workflow, fake_device, tone())
        workflow.stop()
        task = asyncio.create_task(workflow.submit("Standup"))
        await started.wait()

        workflow.cancel()
        result = await task

        assert result.ok is False
        assert result.error is None
        assert workflow.phase is WorkflowPhase.idle
        workflow._on_uploaded.assert_not_awaited()

    async def test_cancel_while_device_opening(self, make_device, mock_storage):
        """A cancel during the device open wins; the device ends up released."""
        gate = threading.Event()
        device = make_device()
        original_open = device.open

        def slow_open(callback):
            gate.wait(timeout=2)
            original_open(callback)

        device.open = slow_open
        wf = RecorderWorkflow(
            UploadGateway(mock_storage), session_factory=lambda: CaptureSession(device)
        )

        task = asyncio.create_task(wf.start())
        await asyncio.sleep(0.02)
        assert wf.cancel() is True
        gate.set()
        result = await task

        assert result.ok is False
        assert result.error is None
        assert wf.phase is WorkflowPhase.idle
        assert device.closed is True
        assert get_device_owner() is None

    async def test_restart_waits_for_cancelled_open(self, make_device, mock_storage):
        """The microphone stays claimed until the cancelled open has returned."""
        gate = threading.Event()
        devices = [make_device(), make_device()]
        original_open = devices[0].open

        def slow_open(callback):
            gate.wait(timeout=2)
            original_open(callback)

        devices[0].open = slow_open
        sessions = iter(CaptureSession(d) for d in devices + [devices[1]])
        wf = RecorderWorkflow(UploadGateway(mock_storage), session_factory=lambda: next(sessions))

        first = asyncio.create_task(wf.start())
        await asyncio.sleep(0.02)
        wf.cancel()

        refused = await wf.start()
        assert isinstance(refused.error, DeviceUnavailableError)
        assert devices[1].open_calls == 0

        gate.set()
        assert (await first).ok is False
        assert devices[0].closed is True

        retried = await wf.start()
        assert retried.ok
        assert get_device_owner() is wf.session
        wf.cancel()

    async def test_new_recording_after_cancel(self, workflow, fake_device, tone):
        await _record(workflow, fake_device, tone())
        workflow.cancel()
        result = await workflow.start()

        assert result.ok
        assert workflow.phase is WorkflowPhase.recording
