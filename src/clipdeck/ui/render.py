"""Plain-text rendering for the terminal front end."""

import numpy as np

from clipdeck.core.models import PlaylistView, WorkflowPhase

BARS = "▁▂▃▄▅▆▇█"
EMPTY_PLAYLIST = "No recordings found."


def spectrum_bars(samples: np.ndarray) -> str:
    """One bar glyph per frequency bin, scaled from the 0-255 magnitude."""
    levels = len(BARS) - 1
    return "".join(BARS[int(value) * levels // 255] for value in samples)


def format_countdown(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{secs:02d}"


def status_line(phase: WorkflowPhase, time_left: int, samples: np.ndarray | None = None) -> str:
    bars = spectrum_bars(samples) if samples is not None else ""
    return f"[{phase.value:^17}] {format_countdown(time_left)} {bars}".rstrip()


def format_playlist(view: PlaylistView) -> str:
    """Render one playlist page, marking the playing clip with ``>``."""
    if not view.items:
        lines = [EMPTY_PLAYLIST]
    else:
        lines = []
        for clip in view.items:
            marker = ">" if clip.id == view.playing_id else " "
            tags = f"  [{', '.join(clip.tags)}]" if clip.tags else ""
            lines.append(f"{marker} {clip.id}  {clip.title or '(untitled)'}{tags}")
    footer = f"Page {view.page}/{view.page_count} ({view.total} clips)"
    if view.query:
        footer += f" matching {view.query!r}"
    lines.append(footer)
    return "\n".join(lines)
