"""Console helpers for the VoxStudio CLI.

One themed Rich console shared by every command, table builders for devices
and tracks, and two Progress layouts used as live meters.
"""

import os
from contextlib import contextmanager
from typing import Iterable, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

from voxstudio.core.transport import format_time

console = Console(
    theme=Theme(
        {
            "info": "cyan",
            "success": "green",
            "warning": "yellow",
            "error": "bold red",
            "debug": "dim white",
        }
    )
)

_SPARK_BLOCKS = " ▁▂▃▄▅▆▇█"


def _table(*columns) -> Table:
    table = Table(show_header=True, header_style="bold", expand=False)
    for header, options in columns:
        table.add_column(header, **options)
    return table


def make_device_table(devices: Iterable[dict]) -> Table:
    """Rich table of capture devices.

    Args:
        devices: Dicts as returned by ``CaptureBackend.list_devices``
            (id, name, driver, channels, rate, is_default).
    """
    table = _table(
        ("ID", {"style": "cyan", "justify": "right"}),
        ("Device", {"min_width": 30}),
        ("Driver", {"style": "dim"}),
        ("Inputs", {"style": "dim", "justify": "right"}),
        ("Default rate", {"style": "dim", "justify": "right"}),
        ("", {}),
    )
    for device in devices:
        table.add_row(
            str(device["id"]),
            device["name"],
            device.get("driver", "").upper(),
            str(device.get("channels", "")),
            f"{device.get('rate', '')} Hz",
            "[bold green]DEFAULT[/bold green]" if device.get("is_default") else "",
        )
    return table


def _track_state(track, any_solo: bool) -> str:
    if track.is_solo:
        return "[bold yellow]SOLO[/bold yellow]"
    if track.is_muted:
        return "[red]MUTED[/red]"
    return "[dim]silent[/dim]" if any_solo else ""


def make_track_table(tracks: Sequence) -> Table:
    """Rich table of a project's tracks, in the order given."""
    any_solo = any(t.is_solo for t in tracks)
    table = _table(
        ("#", {"style": "cyan", "justify": "right"}),
        ("Name", {"min_width": 20}),
        ("Length", {"justify": "right"}),
        ("Vol", {"justify": "right"}),
        ("Pan", {"justify": "right"}),
        ("State", {}),
        ("ID", {"style": "dim"}),
    )
    for t in tracks:
        table.add_row(
            str(t.track_order),
            t.name,
            format_time(t.duration_seconds),
            f"{t.volume:.2f}",
            f"{t.pan:+.2f}",
            _track_state(t, any_solo),
            t.id,
        )
    return table


def sparkline(values: Sequence[float], width: int = 60) -> str:
    """Render the last *width* levels in ``[0, 1]`` as block characters."""
    tail = list(values)[-width:]
    top = len(_SPARK_BLOCKS) - 1
    return "".join(_SPARK_BLOCKS[int(round(min(max(v, 0.0), 1.0) * top))] for v in tail)


def make_level_progress() -> Progress:
    """Progress bar driven as an input level meter (0-100).

    Task fields: ``elapsed`` (m:ss), ``level_text`` and ``status`` (the
    scrolling waveform sparkline).
    """
    return Progress(
        TextColumn("🎙 [bold]{task.fields[elapsed]}[/bold]"),
        BarColumn(bar_width=40, complete_style="green", finished_style="red"),
        TextColumn("[bold]{task.fields[level_text]}[/bold]"),
        TextColumn("{task.fields[status]}"),
        console=console,
        expand=False,
    )


def make_transport_progress() -> Progress:
    """Progress bar showing the multi-track playhead.

    Update with ``completed=transport.progress`` and a ``position`` field
    such as ``"0:03 / 0:05"``.
    """
    return Progress(
        TextColumn("▶ Transport"),
        BarColumn(bar_width=40, complete_style="cyan", finished_style="cyan"),
        TextColumn("[bold]{task.fields[position]}[/bold]"),
        console=console,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Silence fd 2 while PortAudio, ALSA and JACK print their probing noise."""
    saved = os.dup(2)
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(saved, 2)
        os.close(devnull)
        os.close(saved)


__all__ = [
    "console",
    "suppress_stderr",
    "make_device_table",
    "make_track_table",
    "make_level_progress",
    "make_transport_progress",
    "sparkline",
]
