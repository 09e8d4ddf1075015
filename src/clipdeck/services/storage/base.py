"""
Abstract base class for clip storage backends.

The recorder workflow and the playlist only talk to this interface,
so tests can substitute ``AsyncMock(spec=BaseStorage)``.
"""

from abc import ABC, abstractmethod

from clipdeck.core.models import Clip, ClipUpload, RecordingBuffer


class BaseStorage(ABC):
    """Interface that every clip storage backend must implement."""

    @abstractmethod
    async def list_clips(self) -> list[Clip]:
        """Return all stored clips in backend order.

        Raises:
            FetchFailedError: On network or server failure.
        """

    @abstractmethod
    async def upload_clip(self, buffer: RecordingBuffer, metadata: ClipUpload) -> Clip | None:
        """Store a recording.

        Args:
            buffer: The finalized audio to upload.
            metadata: Title and comma-separated tags.

        Returns:
            The created clip when the backend echoes it, otherwise None.

        Raises:
            UploadFailedError: On validation, network, or server failure.
        """

    @abstractmethod
    async def delete_clip(self, clip_id: str) -> None:
        """Delete a clip by id.

        Raises:
            DeleteFailedError: When the clip is missing or the server fails.
        """

    @abstractmethod
    async def fetch_audio(self, clip: Clip, start: int = 0) -> bytes:
        """Download a clip's audio, optionally from a byte offset.

        Raises:
            PlaybackFailedError: When the stream cannot be fetched.
        """

    async def aclose(self) -> None:
        """Release transport resources; a no-op unless overridden."""
