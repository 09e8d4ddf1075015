"""Shared pytest fixtures for the ClipDeck test suite.

Provides a scriptable fake microphone, a mocked storage backend, PCM
sample data, and the singleton resets every test relies on.
"""

import math
import struct
from unittest.mock import AsyncMock

import numpy as np
import pytest

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import PlaybackFailedError
from clipdeck.core.models import PlaybackStatus
from clipdeck.services.audio import capture
from clipdeck.services.audio.base import BaseAudioInput, BasePlayback
from clipdeck.services.storage.base import BaseStorage

# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Clear the device owner slot and the cached settings around each test."""
    capture._device_owner = None
    get_settings.cache_clear()
    yield
    capture._device_owner = None
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Audio device fixtures
# ---------------------------------------------------------------------------


class FakeAudioInput(BaseAudioInput):
    """In-memory microphone; tests push blocks with ``emit()``."""

    def __init__(self, sample_rate: int = 8000, channels: int = 1, open_error=None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.open_error = open_error
        self.callback = None
        self.started = False
        self.closed = False
        self.open_calls = 0
        self.stop_calls = 0

    def open(self, callback):
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self.callback = callback
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stop_calls += 1
        self.started = False

    def close(self):
        self.closed = True
        self.callback = None

    def emit(self, block: np.ndarray) -> None:
        """Deliver one block as the audio thread would."""
        if self.callback is not None and self.started:
            self.callback(block)


def tone_block(frames: int = 800, amplitude: int = 12000, channels: int = 1) -> np.ndarray:
    """An int16 block of a 440 Hz tone shaped ``(frames, channels)``."""
    t = np.arange(frames) / 8000.0
    mono = (amplitude * np.sin(2 * np.pi * 440.0 * t)).astype(np.int16)
    return np.repeat(mono[:, None], channels, axis=1)


@pytest.fixture
def fake_device():
    """A fresh fake microphone (8 kHz mono)."""
    return FakeAudioInput()


@pytest.fixture
def make_device():
    """Factory for fake microphones with custom format or open failures."""
    return FakeAudioInput


@pytest.fixture
def tone():
    """The ``tone_block`` helper, for tests that build their own blocks."""
    return tone_block


# ---------------------------------------------------------------------------
# Playback fixtures
# ---------------------------------------------------------------------------


class FakePlayback(BasePlayback):
    """Player that only tracks status and position."""

    def __init__(self, clip, fail_load=False, gate=None):
        super().__init__(clip)
        self.fail_load = fail_load
        self.gate = gate
        self._position = 0.0
        self._loaded = False
        self.closed = False

    @property
    def position(self):
        return self._position

    @property
    def loaded(self):
        return self._loaded

    async def load(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_load:
            raise PlaybackFailedError(f"cannot decode {self.clip.id}")
        self._loaded = True

    def play(self):
        self.status = PlaybackStatus.playing

    def pause(self):
        if self.status is PlaybackStatus.playing:
            self.status = PlaybackStatus.paused

    def seek(self, seconds):
        self._position = seconds

    def close(self):
        self.closed = True
        self.status = PlaybackStatus.idle

    def finish(self):
        """Simulate the audio running out."""
        self.status = PlaybackStatus.idle
        self._position = 0.0
        self.on_finished()


@pytest.fixture
def make_playback():
    """Factory for in-memory players, usable as a ``playback_factory``."""
    return FakePlayback


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_storage():
    """Create a mock storage backend for unit testing.

    Returns:
        AsyncMock: A mock implementing the BaseStorage interface with an
        empty listing by default.
    """
    storage = AsyncMock(spec=BaseStorage)
    storage.list_clips.return_value = []
    storage.upload_clip.return_value = None
    return storage


# ---------------------------------------------------------------------------
# Audio data fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_pcm_bytes():
    """Generate 1 second of 440Hz sine-wave PCM audio (16kHz, 16-bit, mono).

    Returns:
        bytes: Raw PCM audio data.
    """
    sample_rate = 16000
    duration = 1.0
    frequency = 440.0
    amplitude = 16000  # ~50% of max int16

    samples = []
    for i in range(int(sample_rate * duration)):
        value = int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate))
        samples.append(struct.pack("<h", value))
    return b"".join(samples)


@pytest.fixture
def silent_pcm_bytes():
    """Generate 1 second of near-silent PCM audio (16kHz, 16-bit, mono)."""
    return struct.pack("<h", 1) * 16000
