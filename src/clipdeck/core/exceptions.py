"""
ClipDeck exception hierarchy.

All application-specific exceptions inherit from ClipDeckError so the
workflow and playlist layers can turn any failure into an explicit
``OperationResult`` at their boundary.
"""

from datetime import UTC, datetime


class ClipDeckError(Exception):
    """Base exception for all ClipDeck errors.

    Attributes:
        detail: Human-readable message, safe to show to the user.
        code: Stable machine-readable identifier.
        status_code: Upstream HTTP status when the error came from the backend.
        category: Transport category ("connection", "timeout", "http",
            "network") or "local" for errors raised on this machine.
    """

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "CLIPDECK_ERROR",
        status_code: int | None = None,
        category: str = "local",
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.category = category
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class DeviceUnavailableError(ClipDeckError):
    """Raised when no microphone exists, access is denied, or it is already in use."""

    def __init__(self, detail: str = "Microphone access denied or not available") -> None:
        super().__init__(detail=detail, code="DEVICE_UNAVAILABLE")


class EmptyTitleError(ClipDeckError):
    """Returned (not raised) when a submit is attempted without a title."""

    def __init__(self) -> None:
        super().__init__(detail="A title is required before uploading", code="EMPTY_TITLE")


class UploadFailedError(ClipDeckError):
    """Raised when the backend rejects or never receives an upload."""

    def __init__(
        self,
        detail: str = "Upload failed",
        status_code: int | None = None,
        category: str = "unknown",
    ) -> None:
        super().__init__(
            detail=detail,
            code="UPLOAD_FAILED",
            status_code=status_code,
            category=category,
        )


class FetchFailedError(ClipDeckError):
    """Raised when the clip list cannot be fetched."""

    def __init__(
        self,
        detail: str = "Failed to fetch clips",
        status_code: int | None = None,
        category: str = "unknown",
    ) -> None:
        super().__init__(
            detail=detail,
            code="FETCH_FAILED",
            status_code=status_code,
            category=category,
        )


class DeleteFailedError(ClipDeckError):
    """Raised when the backend refuses or fails to delete a clip."""

    def __init__(
        self,
        detail: str = "Failed to delete clip",
        status_code: int | None = None,
        category: str = "unknown",
    ) -> None:
        super().__init__(
            detail=detail,
            code="DELETE_FAILED",
            status_code=status_code,
            category=category,
        )


class PlaybackFailedError(ClipDeckError):
    """Raised when a single clip cannot be streamed, decoded, or played."""

    def __init__(
        self,
        detail: str = "Playback failed",
        status_code: int | None = None,
        category: str = "local",
    ) -> None:
        super().__init__(
            detail=detail,
            code="PLAYBACK_FAILED",
            status_code=status_code,
            category=category,
        )
