"""Live spectrum visualization for an active capture session.

``render_circular_waveform`` is a pure function of one magnitude
snapshot; ``Visualizer`` drives it on a fixed cadence while the session
records and hands every frame to a sink (a terminal line, a canvas, a
test list).
"""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from clipdeck.core.config import get_settings
from clipdeck.core.models import CapturePhase
from clipdeck.services.audio.capture import CaptureSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaveformFrame:
    """Closed polyline around the canvas centre, one point per frequency bin."""

    points: list[tuple[float, float]]
    width: int
    height: int


def render_circular_waveform(
    samples: np.ndarray,
    width: int = 250,
    height: int = 250,
    amplitude_scale: float = 50.0,
) -> WaveformFrame:
    """Map byte magnitudes onto a circle whose radius swells with amplitude.

    Args:
        samples: uint8 magnitudes, one per frequency bin.
        width: Canvas width in pixels.
        height: Canvas height in pixels.
        amplitude_scale: Pixels added to the radius at full amplitude.

    Returns:
        WaveformFrame with points relative to the canvas centre.
    """
    radius = min(width, height) / 3
    count = len(samples)
    points: list[tuple[float, float]] = []
    for i, magnitude in enumerate(samples):
        angle = (i / count) * 2 * math.pi
        reach = radius + (float(magnitude) / 255) * amplitude_scale
        points.append((math.cos(angle) * reach, math.sin(angle) * reach))
    return WaveformFrame(points=points, width=width, height=height)


class Visualizer:
    """Fixed-rate render loop bound to one capture session at a time.

    Each ``start()`` mints a fresh run token; the loop checks it right
    before every frame, so ``stop()`` takes effect synchronously and a
    loop left over from an earlier session never draws again.
    """

    def __init__(
        self,
        sink: Callable[[Any], None] | None = None,
        render: Callable[[np.ndarray], Any] = render_circular_waveform,
        fps: int | None = None,
    ) -> None:
        self._sink = sink
        self._render = render
        self._interval = 1.0 / (fps or get_settings().render_fps)
        self._token: object | None = None
        self._task: asyncio.Task | None = None
        self.frames_rendered = 0
        self.last_frame: Any = None

    @property
    def running(self) -> bool:
        return self._token is not None

    def start(self, session: CaptureSession) -> None:
        """Begin drawing ``session``; any previous loop is cancelled first."""
        self.stop()
        token = object()
        self._token = token
        self._task = asyncio.get_running_loop().create_task(self._run(token, session))

    def stop(self) -> None:
        """Cancel the render loop. No frame is drawn after this returns."""
        self._token = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    def render(self, samples: np.ndarray) -> Any:
        return self._render(samples)

    async def _run(self, token: object, session: CaptureSession) -> None:
        while self._token is token:
            if session.phase is CapturePhase.stopped:
                break
            # Paused sessions keep the loop alive but freeze the picture
            if session.phase is CapturePhase.recording:
                self._draw(token, session.spectrum())
            await asyncio.sleep(self._interval)
        if self._token is token:
            self._token = None
            self._task = None

    def _draw(self, token: object, samples: np.ndarray | None) -> None:
        if samples is None or self._token is not token:
            return
        try:
            frame = self.render(samples)
        except Exception:
            logger.exception("Visualizer render failed; skipping frame")
            return
        self.last_frame = frame
        self.frames_rendered += 1
        if self._sink is not None:
            try:
                self._sink(frame)
            except Exception:
                logger.exception("Visualizer sink failed; skipping frame")
