"""Upload packaging for finalized recordings."""

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from clipdeck.core.exceptions import ClipDeckError, UploadFailedError
from clipdeck.core.models import Clip, ClipUpload, RecordingBuffer
from clipdeck.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


class UploadGateway:
    """Packages a recording with its title and tags and hands it to storage.

    Tags are passed through untouched: a string goes out as typed, a
    sequence is joined with commas.
    """

    def __init__(self, storage: BaseStorage) -> None:
        self._storage = storage

    async def submit(
        self,
        buffer: RecordingBuffer | None,
        title: str,
        tags: str | Sequence[str] = "",
    ) -> Clip | None:
        """Upload one recording.

        Returns:
            The created clip, or None when the backend only acknowledged.

        Raises:
            UploadFailedError: On invalid metadata or any storage failure.
        """
        if buffer is None:
            raise UploadFailedError("There is no recording to upload")
        if not isinstance(tags, str):
            tags = ",".join(tags)
        try:
            metadata = ClipUpload(title=title, tags=tags)
        except ValidationError as exc:
            raise UploadFailedError(f"Invalid upload metadata: {exc}") from None

        logger.info(
            "Uploading %r (%d bytes, %.1fs)", metadata.title, buffer.size, buffer.duration
        )
        try:
            return await self._storage.upload_clip(buffer, metadata)
        except UploadFailedError:
            raise
        except ClipDeckError as exc:
            raise UploadFailedError(
                exc.detail, status_code=exc.status_code, category=exc.category
            ) from exc
