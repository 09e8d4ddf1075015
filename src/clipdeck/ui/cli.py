"""
Command-line front end.

Usage::

    clipdeck record --title "Standup" --tags work,daily
    clipdeck list --query standup --page 2
    clipdeck play <clip-id>
    clipdeck delete <clip-id>
    clipdeck browse
"""

import argparse
import asyncio
import logging
import sys
import threading
from collections.abc import Callable
from typing import TextIO

from clipdeck import __version__
from clipdeck.core.config import get_settings
from clipdeck.core.exceptions import ClipDeckError, EmptyTitleError
from clipdeck.core.models import WorkflowPhase
from clipdeck.services.audio.capture import CaptureSession
from clipdeck.services.audio.visualizer import Visualizer
from clipdeck.services.playlist import PlaylistStore
from clipdeck.services.playlist.store import PlaybackFactory
from clipdeck.services.recorder import RecorderWorkflow, UploadGateway
from clipdeck.services.storage import BaseStorage, create_storage
from clipdeck.ui.render import format_playlist, spectrum_bars, status_line

logger = logging.getLogger(__name__)

RECORD_HELP = "Commands: p = pause, r = resume, s = stop, c = cancel (then Enter)"
BROWSE_HELP = (
    "Commands: search <text>, page <n>, next, prev, play <id>, stop, delete <id>, refresh, quit"
)


class LineReader:
    """Reads lines from ``stream`` (stdin by default) without blocking the loop.

    A daemon thread pumps lines into an asyncio queue, so a read left
    pending by ``poll()`` is kept for the next caller and never holds up
    interpreter shutdown after Ctrl+C.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[str] | None = None
        self._thread: threading.Thread | None = None
        self._eof = False

    async def poll(self, timeout: float | None = None) -> str | None:
        """Return the next line, or None if none arrived within ``timeout``.

        Raises:
            EOFError: When the stream is closed.
        """
        if self._eof:
            raise EOFError
        if self._thread is None:
            self._start()
        try:
            line = await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None
        if not line:
            self._eof = True
            raise EOFError
        return line.strip()

    async def read(self, prompt: str = "") -> str:
        if prompt:
            print(prompt, end="", flush=True)
        return await self.poll()

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(
            target=self._pump, args=(loop, self._queue), name="clipdeck-stdin", daemon=True
        )
        self._thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        stream = self._stream or sys.stdin
        while True:
            line = stream.readline()
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                # Event loop already closed
                return
            if not line:
                return


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_record(
    args: argparse.Namespace,
    storage: BaseStorage,
    *,
    session_factory: Callable[[], CaptureSession] | None = None,
    reader: LineReader | None = None,
) -> int:
    reader = reader or LineReader()
    store = PlaylistStore(storage)

    def _show(frame: str) -> None:
        print(f"\r{status_line(workflow.phase, workflow.time_left)} {frame}", end="", flush=True)

    def _on_error(error: ClipDeckError) -> None:
        print(f"\nError: {error.detail}", file=sys.stderr)

    workflow = RecorderWorkflow(
        UploadGateway(storage),
        session_factory=session_factory,
        visualizer=Visualizer(sink=_show, render=spectrum_bars),
        on_error=_on_error,
        on_uploaded=lambda clip: store.refresh(),
    )

    # Any exit, including task cancellation on Ctrl+C, releases the microphone
    try:
        return await _record_and_upload(args, workflow, store, reader)
    except EOFError:
        return 1
    finally:
        workflow.cancel()


async def _record_and_upload(
    args: argparse.Namespace,
    workflow: RecorderWorkflow,
    store: PlaylistStore,
    reader: LineReader,
) -> int:
    result = await workflow.start()
    if not result.ok:
        return 1
    print(RECORD_HELP)

    while workflow.phase in (WorkflowPhase.recording, WorkflowPhase.paused):
        command = await reader.poll(timeout=0.25)
        if command is None:
            continue
        command = command.lower()
        if command == "p" and workflow.pause():
            print(f"\r{status_line(workflow.phase, workflow.time_left)}", end="", flush=True)
        elif command == "r":
            workflow.resume()
        elif command == "s":
            workflow.stop()
        elif command == "c":
            workflow.cancel()
            print("\nRecording discarded.")
            return 1

    print()
    buffer = workflow.pending_buffer
    if buffer is None:
        return 1
    print(f"Recorded {buffer.duration:.1f}s ({buffer.size} bytes).")

    title, tags = args.title, args.tags
    while True:
        if not title:
            title = await reader.read("Title: ")
        if tags is None:
            tags = await reader.read("Tags (comma-separated, optional): ")
        result = await workflow.submit(title, tags)
        if result.ok:
            clip = result.value
            where = f" as {clip.id}" if clip else ""
            print(f"Uploaded{where}. {len(store.items)} clips stored.")
            return 0
        if isinstance(result.error, EmptyTitleError):
            print(result.error.detail)
            title = None
            continue
        answer = await reader.read("Retry upload? [Y/n] ")
        if answer.lower().startswith("n"):
            return 1


async def cmd_list(args: argparse.Namespace, storage: BaseStorage) -> int:
    store = PlaylistStore(storage)
    result = await store.refresh()
    if not result.ok:
        print(f"Error: {result.error.detail}", file=sys.stderr)
        return 1
    store.set_query(args.query)
    store.set_page(args.page)
    print(format_playlist(store.view()))
    return 0


async def cmd_play(
    args: argparse.Namespace,
    storage: BaseStorage,
    *,
    playback_factory: PlaybackFactory | None = None,
) -> int:
    store = PlaylistStore(storage, playback_factory=playback_factory)
    try:
        result = await store.refresh()
        if not result.ok:
            print(f"Error: {result.error.detail}", file=sys.stderr)
            return 1
        clip = store.get(args.clip_id)
        if clip is None:
            print(f"No clip with id {args.clip_id}", file=sys.stderr)
            return 1
        result = await store.toggle_play(clip.id)
        if not result.ok:
            print(f"Error: {result.error.detail}", file=sys.stderr)
            return 1
        print(f"Playing {clip.title or clip.id} (Ctrl+C to stop)")
        while store.playing_id == clip.id:
            await asyncio.sleep(0.2)
        return 0
    finally:
        store.close()


async def cmd_delete(args: argparse.Namespace, storage: BaseStorage) -> int:
    store = PlaylistStore(storage)
    result = await store.remove(args.clip_id)
    if not result.ok:
        print(f"Error: {result.error.detail}", file=sys.stderr)
        return 1
    print(f"Deleted {args.clip_id}")
    return 0


async def cmd_browse(
    args: argparse.Namespace,
    storage: BaseStorage,
    *,
    playback_factory: PlaybackFactory | None = None,
    reader: LineReader | None = None,
) -> int:
    reader = reader or LineReader()
    store = PlaylistStore(storage, playback_factory=playback_factory)
    result = await store.refresh()
    if not result.ok:
        print(f"Error: {result.error.detail}", file=sys.stderr)
    print(format_playlist(store.view()))
    print(BROWSE_HELP)

    try:
        while True:
            try:
                line = await reader.read("> ")
            except EOFError:
                return 0
            command, _, arg = line.partition(" ")
            command, arg = command.lower(), arg.strip()

            if command in ("quit", "q", "exit"):
                return 0
            if command == "search":
                store.set_query(arg)
            elif command == "page" and arg.isdigit():
                store.set_page(int(arg))
            elif command == "next":
                store.set_page(store.page + 1)
            elif command == "prev":
                store.set_page(store.page - 1)
            elif command == "refresh":
                result = await store.refresh()
            elif command == "play" and arg:
                result = await store.toggle_play(arg)
            elif command == "stop":
                store.stop_all()
            elif command == "delete" and arg:
                result = await store.remove(arg)
            else:
                print(BROWSE_HELP)
                continue

            if command in ("refresh", "play", "delete") and result.error is not None:
                print(f"Error: {result.error.detail}", file=sys.stderr)
            print(format_playlist(store.view()))
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipdeck",
        description="Record, upload, and play back short audio clips",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Storage backend URL (default: settings.api_base_url)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser("record", help="Record and upload a clip")
    record.add_argument("--title", type=str, default=None, help="Clip title")
    record.add_argument("--tags", type=str, default=None, help="Comma-separated tags")
    record.set_defaults(handler=cmd_record)

    listing = subparsers.add_parser("list", help="List uploaded clips")
    listing.add_argument("--query", type=str, default="", help="Filter titles")
    listing.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    listing.set_defaults(handler=cmd_list)

    play = subparsers.add_parser("play", help="Play a clip to the end")
    play.add_argument("clip_id", help="Clip id")
    play.set_defaults(handler=cmd_play)

    delete = subparsers.add_parser("delete", help="Delete a clip")
    delete.add_argument("clip_id", help="Clip id")
    delete.set_defaults(handler=cmd_delete)

    browse = subparsers.add_parser("browse", help="Interactive playlist")
    browse.set_defaults(handler=cmd_browse)

    return parser


async def run(args: argparse.Namespace) -> int:
    storage = create_storage(base_url=args.base_url)
    logger.debug(
        "Running %s against %s", args.command, args.base_url or get_settings().api_base_url
    )
    try:
        return await args.handler(args, storage)
    finally:
        await storage.aclose()


def main(argv: list[str] | None = None) -> int:
    """Entry point with CLI argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
