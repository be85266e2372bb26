"""Watch mode: rescan flows whenever files change."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import typer
from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import SKIP_DIRS

console = Console()

watch_app = typer.Typer(help="👀 Watch mode for continuous flow status", no_args_is_help=True)


class FlowChangeHandler(FileSystemEventHandler):
    """Collect changed paths and flush them once the tree has been quiet.

    Events arrive on the observer thread; :meth:`flush` is polled from the
    main loop and only fires after ``debounce_ms`` without new events.
    """

    def __init__(
        self,
        root: Path,
        rescan_callback: Callable[[List[Path]], None],
        debounce_ms: int = 100,
        ignored_dirs: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.root = Path(root).resolve()
        self.rescan_callback = rescan_callback
        self.debounce_seconds = debounce_ms / 1000.0
        self.ignored_dirs = SKIP_DIRS | set(ignored_dirs)
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: set = set()
        self._last_event = 0.0

    def dispatch(self, event: FileSystemEvent):
        if event.is_directory:
            return
        for attr in ("src_path", "dest_path"):
            src = getattr(event, attr, None)
            if src:
                self._note(Path(src if isinstance(src, str) else src.decode()))

    def _note(self, file_path: Path):
        try:
            relative = file_path.resolve().relative_to(self.root)
        except ValueError:
            return
        if any(part in self.ignored_dirs for part in relative.parts[:-1]):
            return
        with self._lock:
            self._pending.add(file_path)
            self._last_event = self._clock()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self) -> bool:
        """Run the callback if changes are pending and the debounce elapsed."""
        with self._lock:
            if not self._pending or self._clock() - self._last_event < self.debounce_seconds:
                return False
            files = sorted(self._pending)
            self._pending.clear()
        self.rescan_callback(files)
        return True


@watch_app.command("start")
def watch(
    path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Repository root to watch."),
    debounce_ms: Optional[int] = typer.Option(
        None, "--debounce-ms", "-d", min=0, help="Quiet period before rescanning (default from settings).",
    ),
):
    """👀 Re-run the flow status whenever files change.

    Example:
      fm watch start
      fm watch start ./repo --debounce-ms 500
    """
    from .cli import _settings, collect_summaries, render_status

    root = path.resolve()
    settings = _settings(root)
    interval = settings.debounce_ms if debounce_ms is None else debounce_ms
    rescan_count = 0

    def rescan(files: List[Path]):
        nonlocal rescan_count
        changed = files[0].name if len(files) == 1 else f"{len(files)} files"
        try:
            render_status(collect_summaries(root, settings))
            rescan_count += 1
            console.print(f"  [green]✓[/green] Rescanned ({changed} changed)")
        except typer.Exit:
            console.print("  [red]✗[/red] Rescan failed")
        except (OSError, ValueError) as e:
            console.print(f"  [red]✗[/red] Rescan failed: {e}")

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{root}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval}ms")
    console.print(f"  Tag:       {settings.tag}")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    render_status(collect_summaries(root, settings))

    handler = FlowChangeHandler(root, rescan, debounce_ms=interval, ignored_dirs=settings.exclude_dirs)
    observer = Observer()
    observer.schedule(handler, str(root), recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(0.05)
            handler.flush()
    except KeyboardInterrupt:
        observer.stop()
        console.print(f"\n[yellow]Stopped watching.[/yellow] Rescanned {rescan_count} time(s).")

    observer.join()
