"""Console rendering and progress helpers for s3up CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import PartResult, SessionState, UploadResult

PLAIN_PART_STEP = 10

console = Console(stderr=True)


def _echo(message: str) -> None:
    console.print(message)


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]s3-up[/bold green]",
        subtitle="[dim]streaming multipart upload[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_result(result: UploadResult) -> None:
    """Print the terminal status of an upload."""
    if result.success:
        _echo(
            f"[green]Uploaded:[/green] {result.location} "
            f"({_human_size(result.total_bytes)} in {result.part_count} parts)"
        )
        return

    _echo(f"[red]Failed:[/red] {result.destination} - {escape(str(result.error))}")
    if result.upload_id is None:
        return
    if result.cleaned_up:
        _echo(f"[dim]Multipart upload {result.upload_id} was aborted.[/dim]")
    else:
        _echo(
            f"[yellow]Warning:[/yellow] could not abort multipart upload {result.upload_id}: "
            f"{escape(str(result.cleanup_error))}. Abort it manually to avoid storage charges."
        )


class StreamUploadProgress:
    """Event-based console display for a streaming upload of unknown size."""

    def __init__(self, label: str):
        self.label = label
        self._bytes = 0
        self._parts = 0
        self._failed = 0
        self._started_at: Optional[float] = None
        self._progress: Optional[Progress] = None
        self._task_id: Optional[TaskID] = None

        if console.is_terminal:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
                DownloadColumn(),
                TransferSpeedColumn(),
                TextColumn("[dim]parts={task.fields[parts]} state={task.fields[state]}"),
                TimeElapsedColumn(),
                expand=False,
                console=console,
            )

    def start(self) -> None:
        if self._started_at is not None:
            return
        self._started_at = time.monotonic()
        if self._progress is not None:
            self._progress.start()
            self._task_id = self._progress.add_task(
                "upload",
                label=self.label[:60],
                total=None,
                parts=0,
                state=SessionState.IDLE.value,
            )
        else:
            _echo(f"Uploading: {self.label}")

    def on_state_change(self, old_state: SessionState, new_state: SessionState) -> None:
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, state=new_state.value)
            return
        if new_state in (SessionState.COMPLETING, SessionState.ABORTING):
            _echo(f"  {new_state.value}...")

    def on_part_complete(self, result: PartResult) -> None:
        self._parts += 1
        self._bytes += result.size
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, completed=self._bytes, parts=self._parts)
            return
        if self._parts % PLAIN_PART_STEP == 0:
            _echo(f"  {self._parts} parts ({_human_size(self._bytes)})")

    def on_part_failed(self, result: PartResult) -> None:
        self._failed += 1
        _echo(f"[red]Part {result.number} failed:[/red] {escape(str(result.error))}")

    def stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def complete(self, result: UploadResult) -> None:
        self.stop()
        elapsed = time.monotonic() - self._started_at if self._started_at else 0.0
        if result.success and elapsed > 0:
            rate = _human_size(int(result.total_bytes / elapsed))
            _echo(f"[dim]{elapsed:.1f}s, {rate}/s[/dim]")
        render_result(result)
