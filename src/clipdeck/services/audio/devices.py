"""PortAudio microphone adapter built on ``sounddevice``."""

import logging
from types import ModuleType

import numpy as np

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import DeviceUnavailableError
from clipdeck.services.audio.base import BaseAudioInput, BlockCallback

logger = logging.getLogger(__name__)


def load_sounddevice() -> ModuleType:
    """Import ``sounddevice`` on first use.

    Raises:
        DeviceUnavailableError: If the PortAudio shared library is missing.
    """
    try:
        import sounddevice
    except OSError as exc:
        raise DeviceUnavailableError(f"PortAudio library is not available: {exc}") from exc
    return sounddevice


class SoundDeviceInput(BaseAudioInput):
    """Microphone input stream delivering int16 blocks every ``block_ms``."""

    def __init__(
        self,
        sample_rate: int | None = None,
        channels: int | None = None,
        block_ms: int | None = None,
        device: int | str | None = None,
    ) -> None:
        settings = get_settings()
        self.sample_rate = sample_rate or settings.sample_rate
        self.channels = channels or settings.channels
        self.block_ms = block_ms or settings.block_ms
        self.device = device
        self._stream = None

    def open(self, callback: BlockCallback) -> None:
        sd = load_sounddevice()
        blocksize = int(self.sample_rate * (self.block_ms / 1000.0))

        def _on_audio(indata: np.ndarray, frames: int, time_info, status) -> None:  # noqa: ANN001
            if status:
                logger.debug("Input stream status: %s", status)
            callback(indata.copy())

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                device=self.device,
                callback=_on_audio,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailableError(
                f"Microphone access denied or not available: {exc}"
            ) from exc
        logger.info(
            "Opened input device %s at %s Hz x %s ch",
            self.device if self.device is not None else "default",
            self.sample_rate,
            self.channels,
        )

    def start(self) -> None:
        if self._stream is None:
            raise DeviceUnavailableError("Input stream is not open")
        sd = load_sounddevice()
        try:
            self._stream.start()
        except sd.PortAudioError as exc:
            raise DeviceUnavailableError(f"Could not start the microphone: {exc}") from exc

    def stop(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.close()
