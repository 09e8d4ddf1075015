"""Microphone capture session.

One ``CaptureSession`` covers one recording attempt: it owns the input
device from ``open()`` until ``stop()``/``cancel()``, accumulates PCM16
chunks in arrival order, and publishes a live spectrum for the
visualizer. A module-level owner slot ensures at most one session holds
the microphone at a time.

Usage::

    session = CaptureSession(SoundDeviceInput())
    await session.open()
    session.start()
    ...
    buffer = session.stop()
"""

import asyncio
import logging
import threading

import numpy as np

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import DeviceUnavailableError
from clipdeck.core.models import CapturePhase, RecordingBuffer
from clipdeck.services.audio.base import BaseAudioInput
from clipdeck.services.audio.processor import AudioProcessor, SpectrumAnalyser

logger = logging.getLogger(__name__)


class CaptureSession:
    """Live microphone-to-bytes pipeline for one recording attempt.

    Args:
        device: Microphone adapter; the session becomes its only user.
        processor: PCM helper used to finalize chunks into WAV bytes.
        analyser: Spectrum analyser fed from the audio thread.
    """

    def __init__(
        self,
        device: BaseAudioInput,
        processor: AudioProcessor | None = None,
        analyser: SpectrumAnalyser | None = None,
    ) -> None:
        settings = get_settings()
        self._device = device
        self._processor = processor or AudioProcessor(
            sample_rate=device.sample_rate, channels=device.channels
        )
        self._analyser = analyser or SpectrumAnalyser(
            fft_size=settings.fft_size, smoothing=settings.spectrum_smoothing
        )

        # Guards phase and chunks; the block callback runs on the audio thread
        self._lock = threading.Lock()
        self._phase = CapturePhase.created
        self._chunks: list[bytes] = []
        self._frames = 0
        self._spectrum: np.ndarray | None = None
        self._buffer: RecordingBuffer | None = None
        # True while the device open runs on a worker thread
        self._opening = False

    @property
    def phase(self) -> CapturePhase:
        return self._phase

    @property
    def active(self) -> bool:
        return self._phase in (CapturePhase.recording, CapturePhase.paused)

    @property
    def chunk_count(self) -> int:
        with self._lock:
            return len(self._chunks)

    @property
    def recorded_seconds(self) -> float:
        """Seconds of audio captured so far (paused intervals excluded)."""
        return self._frames / self._device.sample_rate

    def spectrum(self) -> np.ndarray | None:
        """Latest frequency-magnitude snapshot, or None before the first block."""
        return self._spectrum

    # -- lifecycle --

    async def open(self) -> bool:
        """Acquire exclusive access to the input device.

        Returns:
            True when the device is open; False if the session was
            cancelled while the device was being opened.

        Raises:
            DeviceUnavailableError: If another session owns the device,
                access is denied, or no device exists.
        """
        global _device_owner
        if self._phase is not CapturePhase.created:
            logger.warning("open() ignored: session is %s", self._phase)
            return False
        if _device_owner is not None and _device_owner is not self:
            raise DeviceUnavailableError("The microphone is already in use by another recording")
        _device_owner = self

        self._opening = True
        try:
            await asyncio.to_thread(self._device.open, self._on_block)
        except DeviceUnavailableError:
            self._teardown()
            raise
        except Exception as exc:
            self._teardown()
            raise DeviceUnavailableError(f"Could not open the microphone: {exc}") from exc
        finally:
            self._opening = False

        if self._phase is CapturePhase.stopped:
            # cancel() ran while the device was opening
            self._teardown()
            return False
        self._phase = CapturePhase.open
        return True

    def start(self) -> bool:
        """Begin capturing; requires a successful ``open()``."""
        if self._phase is not CapturePhase.open:
            logger.warning("start() ignored: session is %s", self._phase)
            return False
        self._analyser.reset()
        with self._lock:
            self._phase = CapturePhase.recording
        try:
            self._device.start()
        except Exception as exc:
            with self._lock:
                self._phase = CapturePhase.stopped
            self._teardown()
            if isinstance(exc, DeviceUnavailableError):
                raise
            raise DeviceUnavailableError(f"Could not start the microphone: {exc}") from exc
        return True

    def pause(self) -> bool:
        if self._phase is not CapturePhase.recording:
            logger.warning("pause() ignored: session is %s", self._phase)
            return False
        with self._lock:
            self._phase = CapturePhase.paused
        return True

    def resume(self) -> bool:
        if self._phase is not CapturePhase.paused:
            logger.warning("resume() ignored: session is %s", self._phase)
            return False
        with self._lock:
            self._phase = CapturePhase.recording
        return True

    def stop(self) -> RecordingBuffer | None:
        """Close the device and assemble every chunk into one buffer.

        Idempotent: a stopped session returns the buffer it already built
        (None if it was cancelled). The device is released even when
        finalization fails.
        """
        if self._phase is CapturePhase.stopped:
            return self._buffer
        if self._opening:
            self.cancel()
            return None
        try:
            # Stopping first lets the last in-flight block land in _chunks
            self._device.stop()
            with self._lock:
                self._phase = CapturePhase.stopped
                chunks, self._chunks = self._chunks, []
                chunk_count = len(chunks)
            pcm = b"".join(chunks)
            self._buffer = RecordingBuffer(
                data=self._processor.encode_wav(pcm),
                sample_rate=self._device.sample_rate,
                channels=self._device.channels,
                frames=len(pcm) // (2 * self._device.channels),
                chunk_count=chunk_count,
            )
            if self._processor.is_silent(self._processor.pcm_to_ndarray(pcm)):
                logger.warning("Recording is silent; check microphone permissions and input level")
        finally:
            with self._lock:
                self._phase = CapturePhase.stopped
            self._teardown()
        return self._buffer

    def cancel(self) -> None:
        """Release the device and discard everything captured.

        During an in-flight ``open()`` the release is left to ``open()``,
        which keeps the owner slot until the device call has returned.
        """
        if self._phase is CapturePhase.stopped:
            self._buffer = None
            return
        with self._lock:
            self._phase = CapturePhase.stopped
            self._chunks = []
        self._buffer = None
        if self._opening:
            # open() still owns the slot and releases it once the device call returns
            return
        self._teardown()

    # -- internals --

    def _on_block(self, block: np.ndarray) -> None:
        """Audio-thread callback: append one PCM16 block and refresh the spectrum."""
        with self._lock:
            if self._phase is not CapturePhase.recording:
                return
            self._chunks.append(block.tobytes())
            self._frames += len(block)

        samples = block.astype(np.float32) / 32768.0
        if samples.ndim > 1:
            samples = samples.mean(axis=1)
        self._spectrum = self._analyser.update(samples)

    def _teardown(self) -> None:
        """Release the device and the owner slot; every exit path ends here."""
        global _device_owner
        try:
            self._device.stop()
        except Exception:
            logger.exception("Failed to stop the input device")
        try:
            self._device.close()
        except Exception:
            logger.exception("Failed to release the input device")
        finally:
            if _device_owner is self:
                _device_owner = None
            self._spectrum = None


# ---------------------------------------------------------------------------
# Module-level device ownership
# ---------------------------------------------------------------------------

_device_owner: CaptureSession | None = None


def get_device_owner() -> CaptureSession | None:
    """Return the session currently holding the microphone, or None."""
    return _device_owner
