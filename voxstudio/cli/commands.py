"""CLI commands for VoxStudio.

This module provides all command-line interface commands using Typer.
"""

import sys
import time
from contextlib import nullcontext
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from loguru import logger
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from voxstudio.core import (
    AppConfig,
    CaptureBackend,
    CaptureGate,
    DurationResolver,
    EffectParameters,
    EffectsProcessor,
    JsonTrackRepository,
    MultiTrackTransport,
    PermissionStatus,
    PyAudioBackend,
    Recorder,
    RecorderState,
    StorageManager,
    StreamPlaybackElement,
    StudioError,
    StudioLog,
    TrackManager,
    TrackSessionStore,
    format_time,
)
from voxstudio.core.ai import encode_clip, generation_parameters
from voxstudio.core.config import OUTPUT_DIR, RATE
from voxstudio.core.duration import estimate_duration_from_size, resolve_duration_or_estimate
from voxstudio.core.effects import EffectKind, effect_names
from voxstudio.core.errors import DurationResolutionError, TrackNotFoundError
from voxstudio.core.storage import load_blob
from voxstudio.cli.utils import (
    console,
    make_device_table,
    make_level_progress,
    make_track_table,
    make_transport_progress,
    sparkline,
    suppress_stderr,
)

app = typer.Typer(help="Voice recording and multi-track studio CLI")
tracks_app = typer.Typer(help="Manage the tracks of a project")
app.add_typer(tracks_app, name="tracks")

app_config = AppConfig()
default_output_dir = str(app_config.get("output_dir", OUTPUT_DIR))
default_rate = int(app_config.get("rate", RATE))

DEFAULT_PROJECT = "default"
REFRESH_INTERVAL = 0.05

_STATUS_STYLE = {
    PermissionStatus.GRANTED: "success",
    PermissionStatus.DENIED: "error",
    PermissionStatus.PROMPT: "warning",
    PermissionStatus.UNKNOWN: "dim",
}


def make_backend() -> CaptureBackend:
    """Audio backend used by every hardware-touching command."""
    return PyAudioBackend(allow_remote=bool(app_config.get("allow_remote", False)))


def _configure_logging(verbose: bool) -> None:
    # Configure loguru log level based on verbose flag
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _quiet(verbose: bool):
    """Hide ALSA/JACK chatter unless running verbose."""
    return nullcontext() if verbose else suppress_stderr()


def _fail(message: str) -> None:
    console.print(f"[error]✗ {message}[/error]")
    sys.exit(1)


def _track_manager(output: str) -> TrackManager:
    output_dir = Path(output)
    resolver = DurationResolver.from_config(app_config)
    return TrackManager(
        repository=JsonTrackRepository(app_config.get_tracks_path(output_dir)),
        sessions=TrackSessionStore(resolver=resolver),
        storage=StorageManager(str(output_dir)),
        resolver=resolver,
        max_per_project=int(app_config.get("max_per_project")),
    )


@app.command()
def devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    _configure_logging(verbose)
    try:
        with _quiet(verbose):
            found = make_backend().list_devices(driver_filter=driver)
    except StudioError as e:
        _fail(e.message)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(found), title=f"[bold]{title}[/bold]"))


@app.command()
def permissions(
    request: bool = typer.Option(
        False, "--request", help="Open and release a capture stream instead of only querying"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Check (or request) microphone access."""
    _configure_logging(verbose)
    gate = CaptureGate(make_backend())
    with _quiet(verbose):
        if request:
            gate.request_permissions()
        else:
            gate.check_permissions()

    style = _STATUS_STYLE[gate.status]
    console.print(f"🎤 Microphone permission: [{style}]{gate.status.value}[/{style}]")
    if gate.last_error is not None:
        console.print(f"[warning]{gate.last_error.kind.value}:[/warning] {gate.last_error.message}")
    if request and not gate.granted:
        sys.exit(1)


@app.command()
def record(
    duration: Optional[float] = typer.Option(
        None, help="Recording duration in seconds. Leave empty to record until Ctrl+C."
    ),
    output: str = typer.Option(default_output_dir, help="Output directory for recordings"),
    rate: int = typer.Option(default_rate, help="Sample rate in Hz"),
    device_id: Optional[int] = typer.Option(None, help="Audio device ID (default input device if empty)"),
    container: Optional[List[str]] = typer.Option(
        None,
        "--container",
        "-c",
        help="Allowed containers: opus, vorbis, flac, wav. The first one writable is used.",
    ),
    track: Optional[str] = typer.Option(None, help="Also save the take as a track with this name"),
    project: str = typer.Option(DEFAULT_PROJECT, help="Project the track is added to"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Record a take from the microphone."""
    _configure_logging(verbose)

    config = AppConfig()
    config.set("rate", rate)
    if container:
        config.set("containers", container)

    output_dir = Path(output)
    log_path = app_config.get_log_path(output_dir)
    recorder = Recorder(
        make_backend(),
        config=config,
        studio_log=StudioLog(log_path),
        device_id=device_id,
    )

    with _quiet(verbose):
        started = recorder.start_recording()
    if not started:
        _fail(recorder.session.last_error or "Could not start recording")

    info_grid = Table.grid(padding=(0, 1))
    info_grid.add_column(style="dim", justify="right")
    info_grid.add_column()
    info_grid.add_row("Session ID:", recorder.session_id)
    info_grid.add_row("Device:", "default" if device_id is None else str(device_id))
    info_grid.add_row("Sample Rate:", f"{rate} Hz")
    info_grid.add_row("Container:", recorder.mime_type)
    info_grid.add_row("Duration:", f"{duration:g}s" if duration else "continuous - Ctrl+C to stop")
    info_grid.add_row("Output:", str(output_dir))
    info_grid.add_row("Log:", str(log_path))
    console.print(Panel(info_grid, title="[bold]🎙 Recording Session[/bold]", border_style="green"))

    start_time = time.monotonic()
    try:
        with make_level_progress() as progress:
            task = progress.add_task("level", total=100, level_text="0%", elapsed="0:00", status="")
            while duration is None or time.monotonic() - start_time < duration:
                recorder.update_level()
                if recorder.state is RecorderState.IDLE:
                    break
                level = recorder.session.input_level * 100
                progress.update(
                    task,
                    completed=level,
                    level_text=f"{level:3.0f}%",
                    elapsed=format_time(recorder.session.elapsed_seconds),
                    status=sparkline(recorder.waveform.values(), width=24),
                )
                time.sleep(REFRESH_INTERVAL)
    except KeyboardInterrupt:
        console.print("[warning]⏹ Recording interrupted by user[/warning]")

    with _quiet(verbose):
        blob = recorder.stop_recording()
    if blob is None:
        _fail(recorder.session.last_error or "Recording produced no audio")

    saved = StorageManager(str(output_dir)).save_blob(blob, recorder.session_id)
    seconds = resolve_duration_or_estimate(blob, DurationResolver.from_config(config))
    console.print(f"[success]✓ Recording saved: {saved} ({format_time(seconds)}, {blob.size} bytes)[/success]")

    if track:
        try:
            created = _track_manager(output).create_track(project, track, blob)
        except StudioError as e:
            _fail(e.message)
        console.print(f"[success]✓ Added track #{created.track_order} '{created.name}' to {project}[/success]")


@app.command()
def duration(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file to inspect"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show each strategy attempt"),
):
    """Resolve the playable duration of an audio file."""
    _configure_logging(verbose)
    blob = load_blob(file)
    try:
        seconds = DurationResolver.from_config(app_config).resolve(blob)
    except DurationResolutionError as e:
        console.print(f"[warning]{e.message}[/warning]")
        estimate = estimate_duration_from_size(blob.size, int(app_config.get("nominal_bitrate")))
        console.print(f"[info]Estimated from size: {estimate:.3f}s ({format_time(estimate)})[/info]")
        return
    console.print(f"[success]✓ {file.name}: {seconds:.3f}s ({format_time(seconds)})[/success]")


@app.command()
def effects(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source audio file"),
    effect: Optional[List[str]] = typer.Option(
        None,
        "--effect",
        "-e",
        help="Effect to apply, in order: reverb, delay, chorus, equalizer (eq), compressor (comp)",
    ),
    params: Optional[Path] = typer.Option(
        None, exists=True, dir_okay=False, help="YAML file with effect parameters"
    ),
    set_values: Optional[List[str]] = typer.Option(
        None, "--set", help="Override one parameter, e.g. reverb.roomSize=0.7"
    ),
    output: Optional[Path] = typer.Option(None, help="Output WAV path (default: <source>.fx.wav)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Render effects onto an audio file and write a 16-bit WAV."""
    _configure_logging(verbose)
    chain = effect or []
    out_path = output or file.with_name(f"{file.stem}.fx.wav")

    try:
        parameters = EffectParameters.from_dict(
            yaml.safe_load(params.read_text(encoding="utf-8")) if params else None
        )
        for assignment in set_values or []:
            key, sep, value = assignment.partition("=")
            kind, dot, name = key.partition(".")
            if not sep or not dot:
                _fail(f"Invalid --set value '{assignment}', expected effect.name=value")
            parameters.update(kind, name, value)
        names = effect_names(chain)
        rendered = EffectsProcessor().render(load_blob(file), chain, parameters)
    except StudioError as e:
        _fail(e.message)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(rendered.data)
    seconds = resolve_duration_or_estimate(rendered, DurationResolver.from_config(app_config))
    StudioLog(app_config.get_log_path(out_path.parent)).render_finished(
        source=file.name, effects=names, output=out_path.name, seconds=seconds
    )
    console.print(
        f"[success]✓ Rendered {' → '.join(names) or 'no effects'} to {out_path} ({format_time(seconds)})[/success]"
    )


@app.command()
def clip(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Clip to submit for transformation"),
    clip_duration: Optional[float] = typer.Option(
        None, "--duration", help="Requested generation length in seconds (8-30)"
    ),
    temperature: Optional[float] = typer.Option(None, help="Sampling temperature (0.1-2.0)"),
    data_url: Optional[Path] = typer.Option(None, help="Write the base64 data URL to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Check a clip against the AI transformation bounds and encode it."""
    _configure_logging(verbose)
    blob = load_blob(file)
    seconds = resolve_duration_or_estimate(blob, DurationResolver.from_config(app_config))
    try:
        url = encode_clip(blob, seconds)
    except StudioError as e:
        _fail(e.message)

    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    grid.add_row("Clip:", f"{file.name} ({format_time(seconds)}, {blob.mime_type})")
    for key, value in generation_parameters(clip_duration, temperature).items():
        grid.add_row(f"{key}:", str(value))
    grid.add_row("Payload:", f"{len(url)} characters")
    console.print(Panel(grid, title="[bold]AI transformation request[/bold]"))

    if data_url is not None:
        data_url.write_text(url, encoding="utf-8")
        console.print(f"[success]✓ Data URL written to {data_url}[/success]")


@app.command()
def play(
    project: str = typer.Option(DEFAULT_PROJECT, help="Project to play"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
    master_volume: float = typer.Option(1.0, min=0.0, max=1.0, help="Master volume (0-1)"),
    start: float = typer.Option(0.0, min=0.0, help="Start position in seconds"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Play every track of a project together."""
    _configure_logging(verbose)
    manager = _track_manager(output)
    tracks = manager.load_tracks(project)
    playable = [t for t in tracks if t.id in manager.sessions]
    if not playable:
        console.print("[warning]No tracks to play[/warning]")
        manager.sessions.close()
        return

    backend = make_backend()
    transport = MultiTrackTransport(master_volume=master_volume)
    with _quiet(verbose):
        transport.sync_tracks(
            playable, lambda t: StreamPlaybackElement(manager.sessions.get(t.id).audio_blob, backend)
        )
    console.print(make_track_table(playable))

    try:
        progress = make_transport_progress()
        task = progress.add_task("transport", total=100, position="0:00 / 0:00")
        with Live(progress, console=console, refresh_per_second=10):
            with _quiet(verbose):
                transport.seek(min(start, transport.duration))
                transport.play()
            while transport.is_playing:
                transport.tick()
                progress.update(
                    task,
                    completed=transport.progress,
                    position=f"{format_time(transport.current_time)} / {format_time(transport.duration)}",
                )
                time.sleep(REFRESH_INTERVAL)
        console.print("[success]✓ Playback finished[/success]")
    except KeyboardInterrupt:
        console.print("\n[warning]⏹ Playback stopped by user[/warning]")
    finally:
        transport.close()
        manager.sessions.close()


@app.command()
def status(
    output: str = typer.Option(default_output_dir, help="Output directory for recordings"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show devices, microphone permission, recordings and configuration."""
    _configure_logging(verbose)

    console.rule("[bold]📋 VoxStudio Status[/bold]")
    console.print()
    backend = make_backend()
    try:
        with _quiet(verbose):
            found = backend.list_devices()
        console.print(Panel(make_device_table(found), title="[bold]Available Input Devices[/bold]"))
    except StudioError as e:
        console.print(f"[error]✗ Error listing devices: {e.message}[/error]")

    gate = CaptureGate(backend)
    with _quiet(verbose):
        gate.check_permissions()
    style = _STATUS_STYLE[gate.status]
    console.print(f"🎤 Microphone permission: [{style}]{gate.status.value}[/{style}]")

    recordings = StorageManager(output).list_recordings()
    console.print(f"[info]{len(recordings)} recording(s) in {output}[/info]")
    takes = [r for r in StudioLog(app_config.get_log_path(Path(output))).records("take") if r.get("event") == "end"]
    if takes:
        last = takes[-1]
        console.print(
            f"[info]Last take: {last['session_id']} ({format_time(last['total_duration_sec'])}) at {last['at']}[/info]"
        )

    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    grid.add_row("Sample Rate:", f"{app_config.get('rate')} Hz")
    grid.add_row("Containers:", ", ".join(app_config.get("containers") or ["opus", "vorbis", "flac", "wav"]))
    grid.add_row("Track limit:", str(app_config.get("max_per_project")))
    grid.add_row("Effects:", ", ".join(k.value for k in EffectKind))
    console.print(Panel(grid, title="[bold]Configuration[/bold]"))


# ---------------------------------------------------------------------------
# tracks
# ---------------------------------------------------------------------------


@tracks_app.command("add")
def tracks_add(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file to add"),
    name: Optional[str] = typer.Option(None, help="Track name (default: file name)"),
    description: Optional[str] = typer.Option(None, help="Optional description"),
    project: str = typer.Option(DEFAULT_PROJECT, help="Project to add the track to"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Add an audio file as a new track."""
    _configure_logging(verbose)
    manager = _track_manager(output)
    try:
        track = manager.create_track(project, name or file.stem, load_blob(file), description)
    except StudioError as e:
        _fail(e.message)
    finally:
        manager.sessions.close()
    console.print(
        f"[success]✓ Added track #{track.track_order} '{track.name}' "
        f"({format_time(track.duration_seconds)}) id={track.id}[/success]"
    )


@tracks_app.command("list")
def tracks_list(
    project: str = typer.Option(DEFAULT_PROJECT, help="Project to list"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """List the tracks of a project in order."""
    manager = _track_manager(output)
    found = manager.list_tracks(project)
    if not found:
        console.print(f"[dim]No tracks in project {project}[/dim]")
        return
    console.print(Panel(make_track_table(found), title=f"[bold]Tracks: {project}[/bold]"))


@tracks_app.command("show")
def tracks_show(
    track_id: str = typer.Argument(..., help="Track ID"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Show a track's settings and waveform."""
    manager = _track_manager(output)
    try:
        track = manager.repository.get(track_id)
        if track is None:
            raise TrackNotFoundError(track_id)
        manager.load_tracks(track.project_id)
        pending = manager.sessions.request_waveform(track_id)
        if pending is not None:
            try:
                pending.result()
            except (RuntimeError, ValueError) as e:
                console.print(f"[warning]Waveform unavailable: {e}[/warning]")
        session = manager.sessions.get(track_id)
    except StudioError as e:
        _fail(e.message)
    finally:
        manager.sessions.close()

    console.print(make_track_table([track]))
    if session is None or session.waveform is None:
        console.print("[warning]No audio available for this track[/warning]")
        return
    console.print(f"[info]{sparkline(session.waveform.peaks, width=60)}[/info]")


def _apply(output: str, action, *args) -> None:
    manager = _track_manager(output)
    try:
        track = action(manager, *args)
    except StudioError as e:
        _fail(e.message)
    console.print(make_track_table(manager.list_tracks(track.project_id)))


@tracks_app.command("mute")
def tracks_mute(
    track_id: str = typer.Argument(..., help="Track ID"),
    off: bool = typer.Option(False, "--off", help="Unmute instead"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Mute (or unmute) a track."""
    _apply(output, TrackManager.mute_track, track_id, not off)


@tracks_app.command("solo")
def tracks_solo(
    track_id: str = typer.Argument(..., help="Track ID"),
    off: bool = typer.Option(False, "--off", help="Clear solo instead"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Solo (or un-solo) a track. Soloing unmutes it and un-solos the others."""
    _apply(output, TrackManager.solo_track, track_id, not off)


@tracks_app.command("volume")
def tracks_volume(
    track_id: str = typer.Argument(..., help="Track ID"),
    value: float = typer.Argument(..., help="Volume 0-1 (clamped)"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Set a track's volume."""
    _apply(output, TrackManager.set_track_volume, track_id, value)


@tracks_app.command("pan")
def tracks_pan(
    track_id: str = typer.Argument(..., help="Track ID"),
    value: float = typer.Argument(..., help="Pan -1 (left) to 1 (right), clamped"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Set a track's stereo pan."""
    _apply(output, TrackManager.set_track_pan, track_id, value)


@tracks_app.command("reorder")
def tracks_reorder(
    track_ids: List[str] = typer.Argument(..., help="Track IDs in the new order"),
    project: str = typer.Option(DEFAULT_PROJECT, help="Project to reorder"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Renumber tracks 1..N in the given order."""
    manager = _track_manager(output)
    try:
        ordered = manager.reorder_tracks(project, track_ids)
    except StudioError as e:
        _fail(e.message)
    console.print(make_track_table(ordered))


@tracks_app.command("remove")
def tracks_remove(
    track_id: str = typer.Argument(..., help="Track ID"),
    output: str = typer.Option(default_output_dir, help="Directory holding the project's tracks"),
):
    """Delete a track and its audio."""
    manager = _track_manager(output)
    try:
        manager.delete_track(track_id)
    except StudioError as e:
        _fail(e.message)
    console.print(f"[success]✓ Removed track {track_id}[/success]")
