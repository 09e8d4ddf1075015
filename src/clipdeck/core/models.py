"""
Data models shared by the recorder, playlist, and storage layers.

Pydantic v2 models describe what crosses the wire; frozen dataclasses
describe what stays in memory.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from clipdeck.core.exceptions import ClipDeckError

# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


class WorkflowPhase(StrEnum):
    """Phases of the record → label → upload workflow."""

    idle = "idle"
    recording = "recording"
    paused = "paused"
    awaiting_metadata = "awaiting_metadata"
    uploading = "uploading"


class CapturePhase(StrEnum):
    """Lifecycle of one microphone capture session."""

    created = "created"
    open = "open"
    recording = "recording"
    paused = "paused"
    stopped = "stopped"


class PlaybackStatus(StrEnum):
    """State of a single clip's player."""

    idle = "idle"
    loading = "loading"
    playing = "playing"
    paused = "paused"


# ---------------------------------------------------------------------------
# Clip
# ---------------------------------------------------------------------------


class Clip(BaseModel):
    """One uploaded recording as returned by the storage backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str = ""
    tags: list[str] = Field(default_factory=list)
    url: str = Field(
        default="",
        validation_alias=AliasChoices("url", "playable_url", "playableLocator"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> list[str]:
        # Backends store the comma-separated upload field as-is
        if value is None:
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value


class ClipUpload(BaseModel):
    """Metadata sent alongside the audio part of an upload."""

    title: str = Field(min_length=1)
    tags: str = ""


# ---------------------------------------------------------------------------
# In-memory state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecordingBuffer:
    """The finalized audio of one capture session.

    ``data`` is a complete WAV file assembled from the session's PCM16
    chunks in arrival order.
    """

    data: bytes = field(repr=False)
    sample_rate: int
    channels: int
    frames: int
    chunk_count: int
    mime_type: str = "audio/wav"
    filename: str = "recording.wav"

    @property
    def duration(self) -> float:
        """Recorded audio length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a workflow or playlist operation.

    ``ok=False`` with ``error=None`` means the call was ignored because
    the current phase does not allow it.
    """

    ok: bool
    error: ClipDeckError | None = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ClipDeckError) -> "OperationResult":
        return cls(ok=False, error=error)

    @classmethod
    def ignored(cls) -> "OperationResult":
        return cls(ok=False)


@dataclass(frozen=True)
class PlaylistView:
    """One rendered page of the playlist."""

    items: list[Clip]
    page: int
    page_count: int
    total: int
    query: str = ""
    playing_id: str | None = None
