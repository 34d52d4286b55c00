"""CLI integration tests for VoxStudio."""

import json

import pytest
from conftest import FakeBackend, FakePlaybackElement, make_tone
from typer.testing import CliRunner

from voxstudio.cli import app
from voxstudio.cli import commands
from voxstudio.core.errors import CaptureError, FailureKind
from voxstudio.core.tracks import JsonTrackRepository
from voxstudio.core.wav import encode_wav

runner = CliRunner()


@pytest.fixture
def studio(tmp_path, monkeypatch):
    """Run in a clean directory with a scriptable backend.

    Returns a namespace-like dict with the output dir and a setter for the
    backend used by the commands.
    """
    monkeypatch.chdir(tmp_path)
    # recreate app_config so it reads from the new cwd
    commands.app_config = commands.AppConfig()
    holder = {"backend": FakeBackend(query="granted")}
    monkeypatch.setattr(commands, "make_backend", lambda: holder["backend"])
    monkeypatch.setattr(commands, "REFRESH_INTERVAL", 0.01)
    holder["out"] = tmp_path / "out"
    return holder


def _write_wav(path, seconds, rate=16000):
    path.write_bytes(encode_wav(make_tone(seconds, rate), rate).data)
    return path


def _tracks(out, project="default"):
    return JsonTrackRepository(out / "tracks.json").list(project)


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("record", "effects", "play", "tracks", "clip"):
        assert name in result.stdout


def test_devices_command(studio):
    """Test devices command."""
    studio["backend"] = FakeBackend(devices=[
        {"id": 2, "name": "USB Mic", "driver": "usb", "channels": 1, "rate": 48000, "is_default": True},
        {"id": 5, "name": "Pulse", "driver": "pulse", "channels": 2, "rate": 44100, "is_default": False},
    ])
    result = runner.invoke(app, ["devices", "--driver", "usb"])

    assert result.exit_code == 0
    assert "USB Mic" in result.stdout
    assert "Pulse" not in result.stdout


def test_permissions_check(studio):
    result = runner.invoke(app, ["permissions"])
    assert result.exit_code == 0
    assert "granted" in result.stdout


def test_permissions_request_denied(studio):
    studio["backend"] = FakeBackend(probe_error=CaptureError(FailureKind.ACCESS_DENIED))
    result = runner.invoke(app, ["permissions", "--request"])

    assert result.exit_code == 1
    assert "denied" in result.stdout


def test_record_saves_take(studio):
    """A short take is written to the output directory and logged."""
    studio["backend"] = FakeBackend(prefill_chunks=5)
    out = studio["out"]
    result = runner.invoke(
        app, ["record", "--duration", "0.2", "--output", str(out), "-c", "wav"]
    )

    assert result.exit_code == 0, result.stdout
    assert "Recording saved" in result.stdout
    assert len(list(out.glob("*.wav"))) == 1
    events = [json.loads(line)["event"] for line in (out / "studio.jsonl").read_text().splitlines()]
    assert events == ["start", "end"]


def test_record_as_track(studio):
    studio["backend"] = FakeBackend(prefill_chunks=5)
    out = studio["out"]
    result = runner.invoke(
        app, ["record", "--duration", "0.1", "--output", str(out), "-c", "wav", "--track", "Vocals"]
    )

    assert result.exit_code == 0, result.stdout
    tracks = _tracks(out)
    assert [t.name for t in tracks] == ["Vocals"]
    assert tracks[0].duration_seconds == pytest.approx(0.5, abs=0.05)


def test_record_without_permission_fails(studio):
    studio["backend"] = FakeBackend(probe_error=CaptureError(FailureKind.ACCESS_DENIED))
    result = runner.invoke(app, ["record", "--duration", "0.1", "--output", str(studio["out"])])

    assert result.exit_code == 1
    assert "denied" in result.stdout


def test_duration_command(studio, tmp_path):
    source = _write_wav(tmp_path / "take.wav", 2.0)
    result = runner.invoke(app, ["duration", str(source)])

    assert result.exit_code == 0
    assert "2.000s" in result.stdout


def test_duration_falls_back_to_estimate(studio, tmp_path):
    source = tmp_path / "empty.wav"
    source.write_bytes(b"")
    result = runner.invoke(app, ["duration", str(source)])

    assert result.exit_code == 0
    assert "Estimated from size" in result.stdout


def test_effects_command(studio, tmp_path):
    source = _write_wav(tmp_path / "take.wav", 1.0)
    result = runner.invoke(
        app,
        ["effects", str(source), "-e", "eq", "-e", "reverb", "--set", "reverb.roomSize=0.3"],
    )

    assert result.exit_code == 0, result.stdout
    rendered = tmp_path / "take.fx.wav"
    assert rendered.read_bytes()[:4] == b"RIFF"
    record = json.loads((tmp_path / "studio.jsonl").read_text())
    assert record["effects"] == ["equalizer", "reverb"]


def test_effects_params_file(studio, tmp_path):
    source = _write_wav(tmp_path / "take.wav", 0.5)
    params = tmp_path / "fx.yml"
    params.write_text("delay:\n  delayTime: 0.1\n  feedback: 0.2\n", encoding="utf-8")
    target = tmp_path / "renders" / "out.wav"
    result = runner.invoke(
        app, ["effects", str(source), "-e", "delay", "--params", str(params), "--output", str(target)]
    )

    assert result.exit_code == 0, result.stdout
    assert target.exists()


@pytest.mark.parametrize("assignment", ["reverb", "reverb.loudness=2", "delay.feedback=lots"])
def test_effects_rejects_bad_override(studio, tmp_path, assignment):
    source = _write_wav(tmp_path / "take.wav", 0.5)
    result = runner.invoke(app, ["effects", str(source), "-e", "reverb", "--set", assignment])
    assert result.exit_code == 1


def test_effects_rejects_unknown_effect(studio, tmp_path):
    source = _write_wav(tmp_path / "take.wav", 0.5)
    result = runner.invoke(app, ["effects", str(source), "-e", "flanger"])
    assert result.exit_code == 1


def test_clip_command(studio, tmp_path):
    source = _write_wav(tmp_path / "clip.wav", 2.0)
    target = tmp_path / "clip.txt"
    result = runner.invoke(
        app, ["clip", str(source), "--duration", "45", "--data-url", str(target)]
    )

    assert result.exit_code == 0, result.stdout
    assert target.read_text(encoding="utf-8").startswith("data:audio/wav;base64,")
    assert "30" in result.stdout


def test_clip_too_long(studio, tmp_path):
    source = _write_wav(tmp_path / "long.wav", 12.0, rate=8000)
    result = runner.invoke(app, ["clip", str(source)])

    assert result.exit_code == 1
    assert "10 seconds or shorter" in result.stdout


def test_status_command(studio):
    """Test status command with no devices and an empty output dir."""
    result = runner.invoke(app, ["status", "--output", str(studio["out"])])
    assert result.exit_code == 0
    assert "granted" in result.stdout
    assert "recording(s)" in result.stdout
    assert "Configuration" in result.stdout


def test_tracks_workflow(studio, tmp_path):
    """Add, solo, mix, reorder, show and remove tracks through the CLI."""
    out = str(studio["out"])
    first = _write_wav(tmp_path / "vocals.wav", 2.0)
    second = _write_wav(tmp_path / "drums.wav", 1.0)

    assert runner.invoke(app, ["tracks", "add", str(first), "--output", out]).exit_code == 0
    result = runner.invoke(
        app, ["tracks", "add", str(second), "--name", "Beat", "--description", "loop", "--output", out]
    )
    assert result.exit_code == 0, result.stdout

    vocals, beat = _tracks(studio["out"])
    assert (vocals.name, beat.name) == ("vocals", "Beat")
    assert (vocals.track_order, beat.track_order) == (1, 2)

    assert runner.invoke(app, ["tracks", "mute", beat.id, "--output", out]).exit_code == 0
    assert runner.invoke(app, ["tracks", "solo", beat.id, "--output", out]).exit_code == 0
    assert runner.invoke(app, ["tracks", "volume", vocals.id, "1.7", "--output", out]).exit_code == 0
    assert runner.invoke(app, ["tracks", "pan", vocals.id, "--output", out, "--", "-0.5"]).exit_code == 0

    vocals, beat = _tracks(studio["out"])
    assert beat.is_solo and not beat.is_muted
    assert vocals.volume == 1.0
    assert vocals.pan == -0.5

    result = runner.invoke(app, ["tracks", "reorder", beat.id, vocals.id, "--output", out])
    assert result.exit_code == 0
    assert [t.name for t in _tracks(studio["out"])] == ["Beat", "vocals"]

    result = runner.invoke(app, ["tracks", "list", "--output", out])
    assert result.exit_code == 0
    assert "SOLO" in result.stdout

    result = runner.invoke(app, ["tracks", "show", vocals.id, "--output", out])
    assert result.exit_code == 0, result.stdout

    result = runner.invoke(app, ["tracks", "remove", vocals.id, "--output", out])
    assert result.exit_code == 0
    assert [t.name for t in _tracks(studio["out"])] == ["Beat"]
    assert not list(studio["out"].glob(f"track-{vocals.id}.*"))


def test_tracks_limit_reported(studio, tmp_path):
    out = str(studio["out"])
    commands.app_config.set("max_per_project", 1)
    source = _write_wav(tmp_path / "a.wav", 0.5)

    assert runner.invoke(app, ["tracks", "add", str(source), "--output", out]).exit_code == 0
    result = runner.invoke(app, ["tracks", "add", str(source), "--output", out])
    assert result.exit_code == 1


def test_tracks_unknown_id(studio):
    result = runner.invoke(app, ["tracks", "remove", "missing", "--output", str(studio["out"])])
    assert result.exit_code == 1


def test_tracks_list_empty(studio):
    result = runner.invoke(app, ["tracks", "list", "--output", str(studio["out"])])
    assert result.exit_code == 0
    assert "No tracks" in result.stdout


def test_play_without_tracks(studio):
    result = runner.invoke(app, ["play", "--output", str(studio["out"])])
    assert result.exit_code == 0
    assert "No tracks to play" in result.stdout


class _RunningElement(FakePlaybackElement):
    """Advances its own clock each time the transport reads it."""

    @property
    def current_time(self):
        self.advance(0.25)
        return self.time


def test_play_runs_to_end(studio, tmp_path, monkeypatch):
    out = str(studio["out"])
    for name, seconds in (("a", 1.0), ("b", 0.5)):
        source = _write_wav(tmp_path / f"{name}.wav", seconds)
        assert runner.invoke(app, ["tracks", "add", str(source), "--output", out]).exit_code == 0

    elements = []

    def element_factory(blob, backend):
        elements.append(_RunningElement(1.0))
        return elements[-1]

    monkeypatch.setattr(commands, "StreamPlaybackElement", element_factory)
    result = runner.invoke(app, ["play", "--output", out])

    assert result.exit_code == 0, result.stdout
    assert "Playback finished" in result.stdout
    assert len(elements) == 2
    assert all(e.paused and e.time == 0.0 for e in elements)
