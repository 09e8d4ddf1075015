"""
Abstract base classes for audio devices.

Capture and playback code depends on these interfaces so the state
machines can be exercised without PortAudio.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

import numpy as np

from clipdeck.core.models import Clip, PlaybackStatus

BlockCallback = Callable[[np.ndarray], None]


class BaseAudioInput(ABC):
    """Interface that every microphone adapter must implement.

    Blocks are delivered as int16 arrays shaped ``(frames, channels)``,
    possibly from a foreign thread.
    """

    sample_rate: int
    channels: int

    @abstractmethod
    def open(self, callback: BlockCallback) -> None:
        """Acquire the device and register the block callback.

        May block; callers run it off the event loop.

        Raises:
            DeviceUnavailableError: If access is denied or no device exists.
        """

    @abstractmethod
    def start(self) -> None:
        """Begin delivering blocks."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering blocks; no callback runs after this returns."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Must be safe to call more than once."""


class BasePlayback(ABC):
    """Player for a single clip, modelled on an HTML audio element."""

    def __init__(self, clip: Clip) -> None:
        self.clip = clip
        self.status = PlaybackStatus.idle
        # Set by the owner; invoked on the event loop when audio runs out
        self.on_finished: Callable[[], None] | None = None

    @property
    @abstractmethod
    def position(self) -> float:
        """Current playback position in seconds."""

    @property
    @abstractmethod
    def loaded(self) -> bool:
        """Whether the audio has been fetched and decoded."""

    @abstractmethod
    async def load(self) -> None:
        """Fetch and decode the clip's audio.

        Raises:
            PlaybackFailedError: If the stream cannot be fetched or decoded.
        """

    @abstractmethod
    def play(self) -> None:
        """Start or continue output from the current position."""

    @abstractmethod
    def pause(self) -> None:
        """Halt output, keeping the position."""

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """Move the playback position."""

    @abstractmethod
    def close(self) -> None:
        """Release the output device."""

    def stop(self) -> None:
        """Halt output and rewind to the start."""
        self.pause()
        self.seek(0.0)
        self.status = PlaybackStatus.idle
