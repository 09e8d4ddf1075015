"""Per-clip audio player built on ``sounddevice``.

Audio is fetched through the storage backend and decoded once on
``load()``; output then runs from an in-memory float32 buffer so pause,
seek, and resume never touch the network again.
"""

import asyncio
import logging
import threading
from types import ModuleType

import numpy as np

from clipdeck.core.exceptions import ClipDeckError, PlaybackFailedError
from clipdeck.core.models import Clip, PlaybackStatus
from clipdeck.services.audio.base import BasePlayback
from clipdeck.services.audio.devices import load_sounddevice
from clipdeck.services.audio.processor import AudioProcessor
from clipdeck.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


class SoundDevicePlayback(BasePlayback):
    """Plays one clip through the default output device.

    Args:
        clip: Clip to play.
        storage: Backend the audio bytes are fetched from.
        processor: Decoder for the downloaded payload.
        device: Output device index or name (None = system default).
    """

    def __init__(
        self,
        clip: Clip,
        storage: BaseStorage,
        processor: AudioProcessor | None = None,
        device: int | str | None = None,
    ) -> None:
        super().__init__(clip)
        self._storage = storage
        self._processor = processor or AudioProcessor()
        self._device = device

        # Guards the cursor; the output callback runs on the audio thread
        self._lock = threading.Lock()
        self._frames: np.ndarray | None = None
        self._sample_rate = 0
        self._cursor = 0
        self._ended = False
        self._stream = None
        self._sd: ModuleType | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def position(self) -> float:
        if not self._sample_rate:
            return 0.0
        return self._cursor / self._sample_rate

    @property
    def duration(self) -> float:
        if self._frames is None or not self._sample_rate:
            return 0.0
        return len(self._frames) / self._sample_rate

    @property
    def loaded(self) -> bool:
        return self._frames is not None

    async def load(self) -> None:
        if self.loaded:
            return
        self.status = PlaybackStatus.loading
        try:
            data = await self._storage.fetch_audio(self.clip)
            frames, sample_rate = await asyncio.to_thread(self._processor.decode, data)
        except PlaybackFailedError:
            self.status = PlaybackStatus.idle
            raise
        except ClipDeckError as exc:
            self.status = PlaybackStatus.idle
            raise PlaybackFailedError(
                exc.detail, status_code=exc.status_code, category=exc.category
            ) from exc
        except Exception as exc:
            self.status = PlaybackStatus.idle
            raise PlaybackFailedError(f"Could not decode '{self.clip.title}': {exc}") from exc

        self._frames = frames
        self._sample_rate = sample_rate
        self._cursor = 0
        self.status = PlaybackStatus.idle
        logger.debug(
            "Loaded clip %s: %d frames at %d Hz", self.clip.id, len(frames), sample_rate
        )

    def play(self) -> None:
        """Start output from the current position.

        Raises:
            PlaybackFailedError: If the clip is not loaded or no output
                device can be opened.
        """
        if self._frames is None:
            raise PlaybackFailedError(f"Clip '{self.clip.title}' is not loaded")
        if self.status is PlaybackStatus.playing:
            return
        self._loop = asyncio.get_running_loop()
        with self._lock:
            if self._cursor >= len(self._frames):
                self._cursor = 0
        self._ended = False

        try:
            sd = self._sd or load_sounddevice()
            self._sd = sd
            if self._stream is None:
                self._stream = sd.OutputStream(
                    samplerate=self._sample_rate,
                    channels=self._frames.shape[1],
                    dtype="float32",
                    device=self._device,
                    callback=self._callback,
                    finished_callback=self._finished,
                )
            elif not self._stream.stopped:
                # A stream that ended via CallbackStop must be stopped before restarting
                self._stream.stop()
            self._stream.start()
        except ClipDeckError as exc:
            raise PlaybackFailedError(exc.detail) from exc
        except Exception as exc:
            raise PlaybackFailedError(f"Could not open the output device: {exc}") from exc
        self.status = PlaybackStatus.playing

    def pause(self) -> None:
        self._ended = False
        if self._stream is not None and self._stream.active:
            self._stream.stop()
        if self.status is PlaybackStatus.playing:
            self.status = PlaybackStatus.paused

    def seek(self, seconds: float) -> None:
        if self._frames is None:
            return
        target = int(max(0.0, seconds) * self._sample_rate)
        with self._lock:
            self._cursor = min(target, len(self._frames))

    def close(self) -> None:
        self._ended = False
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except Exception:
                logger.exception("Failed to close output stream for clip %s", self.clip.id)
        self.status = PlaybackStatus.idle

    # -- audio thread --

    def _callback(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug("Output stream status: %s", status)
        with self._lock:
            chunk = self._frames[self._cursor : self._cursor + frames]
            count = len(chunk)
            outdata[:count] = chunk
            self._cursor += count
        if count < frames:
            outdata[count:] = 0
            self._ended = True
            raise self._sd.CallbackStop

    def _finished(self) -> None:
        if self._ended and self._loop is not None:
            self._loop.call_soon_threadsafe(self._handle_end)

    def _handle_end(self) -> None:
        if not self._ended:
            # Paused or closed after the last block went out
            return
        self._ended = False
        with self._lock:
            self._cursor = 0
        self.status = PlaybackStatus.idle
        logger.debug("Clip %s finished", self.clip.id)
        if self.on_finished is not None:
            self.on_finished()
