"""
Asynchronous HTTP client for the clip storage backend.

Uses ``httpx.AsyncClient`` because every caller lives on the single
asyncio loop that also drives recording and playback.
"""

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import (
    ClipDeckError,
    DeleteFailedError,
    FetchFailedError,
    PlaybackFailedError,
    UploadFailedError,
)
from clipdeck.core.models import Clip, ClipUpload, RecordingBuffer
from clipdeck.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)

CLIPS_PATH = "/api/audio"


class StorageClient(BaseStorage):
    """Thin wrapper around httpx for the ``/api/audio`` REST resource.

    Every transport failure is translated into the ClipDeck error that
    matches the operation (fetch, upload, delete, playback), carrying a
    category and the upstream status code when there is one.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Backend root URL (falls back to settings if not provided).
            timeout: Per-request timeout in seconds (falls back to settings).
            transport: Optional httpx transport, used by tests to mock the backend.
        """
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout if timeout is not None else settings.api_timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "StorageClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _translate(self, exc: httpx.HTTPError, error_cls: type[ClipDeckError]) -> ClipDeckError:
        """Map an httpx failure onto ``error_cls`` with a user-friendly message."""
        if isinstance(exc, httpx.ConnectError):
            return error_cls(
                f"Storage backend is not reachable at {self._base_url}",
                category="connection",
            )
        if isinstance(exc, httpx.TimeoutException):
            return error_cls(
                "Request timed out. The server may be overloaded.",
                category="timeout",
            )
        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            try:
                body = response.json()
                detail = body.get("detail") or body.get("error") or body.get("message")
            except Exception:
                detail = None
            if not detail:
                detail = response.text or f"HTTP {response.status_code}"
            return error_cls(
                str(detail),
                status_code=response.status_code,
                category="http",
            )
        return error_cls(f"Network error: {exc}", category="network")

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[ClipDeckError],
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request, raising ``error_cls`` on any failure.

        Args:
            method: HTTP method name ("get", "post", "delete").
            path: Endpoint path relative to the base URL.
            error_cls: ClipDeck error raised when the request fails.
            **kwargs: Passed through to httpx (data, files, params, etc.).

        Returns:
            The httpx Response object with a successful status code.
        """
        try:
            resp = await getattr(self._client, method)(path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPError as exc:
            error = self._translate(exc, error_cls)
            logger.warning("%s %s failed (%s): %s", method.upper(), path, error.category, error)
            raise error from None

    # -- clips --

    async def list_clips(self) -> list[Clip]:
        resp = await self._request("get", CLIPS_PATH, FetchFailedError)
        try:
            payload = resp.json()
        except ValueError:
            raise FetchFailedError(
                "Backend returned a non-JSON clip list", category="http"
            ) from None

        if isinstance(payload, dict):
            payload = payload.get("items", payload.get("clips", []))
        if not isinstance(payload, list):
            raise FetchFailedError("Backend returned an unexpected clip list", category="http")

        clips: list[Clip] = []
        seen: set[str] = set()
        for record in payload:
            try:
                clip = Clip.model_validate(record)
            except ValidationError as exc:
                raise FetchFailedError(f"Malformed clip record: {exc}", category="http") from None
            if clip.id in seen:
                logger.warning("Duplicate clip id %s in listing; keeping the first", clip.id)
                continue
            seen.add(clip.id)
            clips.append(clip)
        return clips

    async def upload_clip(self, buffer: RecordingBuffer, metadata: ClipUpload) -> Clip | None:
        resp = await self._request(
            "post",
            CLIPS_PATH,
            UploadFailedError,
            data={"title": metadata.title, "tags": metadata.tags},
            files={"audio": (buffer.filename, buffer.data, buffer.mime_type)},
        )
        # Any 2xx counts as stored; the body is only parsed opportunistically
        try:
            body = resp.json()
            return Clip.model_validate(body)
        except (ValueError, ValidationError):
            logger.debug("Upload acknowledged without a clip record (HTTP %s)", resp.status_code)
            return None

    async def delete_clip(self, clip_id: str) -> None:
        await self._request("delete", f"{CLIPS_PATH}/{quote(clip_id, safe='')}", DeleteFailedError)

    # -- audio --

    async def fetch_audio(self, clip: Clip, start: int = 0) -> bytes:
        """Download a clip's audio bytes.

        ``clip.url`` may be absolute or relative to the base URL; clips
        without a locator are streamed from ``/api/audio/{id}``.
        """
        locator = clip.url or f"{CLIPS_PATH}/{quote(clip.id, safe='')}"
        headers = {"Range": f"bytes={start}-"} if start > 0 else None
        try:
            async with self._client.stream("GET", locator, headers=headers) as resp:
                if resp.is_error:
                    # Load the error body so _translate can read its detail
                    await resp.aread()
                resp.raise_for_status()
                chunks = [chunk async for chunk in resp.aiter_bytes()]
        except httpx.HTTPError as exc:
            raise self._translate(exc, PlaybackFailedError) from None
        return b"".join(chunks)
