"""Shared test fixtures for VoxStudio tests.

Nothing here touches audio hardware: capture and playback go through
:class:`FakeBackend`, the recording clock is a :class:`ManualClock`.
"""

import io
from types import SimpleNamespace

import numpy as np
import pytest
import soundfile as sf

from voxstudio.core.backend import CaptureBackend, CaptureStream, OutputStream
from voxstudio.core.config import AppConfig
from voxstudio.core.encoding import RawAudioBlob
from voxstudio.core.transport import PlaybackElement
from voxstudio.core.wav import encode_wav


def make_tone(seconds, rate=16000, freq=440.0, channels=1, amplitude=0.5):
    """Sine tone shaped ``(channels, frames)``."""
    t = np.arange(int(round(seconds * rate))) / float(rate)
    row = amplitude * np.sin(2 * np.pi * freq * t)
    return np.tile(row, (channels, 1)).astype(np.float32)


def encode_blob(buffer, rate, format, subtype, mime_type):
    out = io.BytesIO()
    sf.write(out, buffer.T, rate, format=format, subtype=subtype)
    return RawAudioBlob(data=out.getvalue(), mime_type=mime_type)


class FakeCaptureStream(CaptureStream):
    """Delivers chunks only while active, like a PortAudio callback stream."""

    def __init__(self, callback, frames_per_buffer, channels):
        self.callback = callback
        self.frames_per_buffer = frames_per_buffer
        self.channels = channels
        self.active = True
        self.closed = False

    def feed(self, chunks=1, amplitude=0.5):
        for _ in range(chunks):
            if not self.active or self.closed:
                continue
            t = np.arange(self.frames_per_buffer) / 48000.0
            mono = (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
            self.callback(np.tile(mono[:, None], (1, self.channels)))

    def pause(self):
        self.active = False

    def resume(self):
        self.active = True

    def close(self):
        self.active = False
        self.closed = True


class FakeOutputStream(OutputStream):
    def __init__(self, callback):
        self.callback = callback
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class FakeBackend(CaptureBackend):
    """Scriptable capture backend.

    Args:
        secure: Whether capture is allowed in this context.
        query: Answer of the non-intrusive permission query (``None``: unavailable).
        probe_error: Raised by :meth:`probe` when set.
        open_error: Raised by :meth:`open_capture` when set.
        prefill_chunks: Chunks delivered as soon as a capture stream opens.
    """

    def __init__(self, secure=True, query=None, probe_error=None, open_error=None, prefill_chunks=0, devices=None):
        self.secure = secure
        self.query = query
        self.probe_error = probe_error
        self.open_error = open_error
        self.prefill_chunks = prefill_chunks
        self.devices = devices or []
        self.probe_calls = []
        self.streams = []
        self.outputs = []

    @property
    def stream(self):
        return self.streams[-1]

    def is_secure_context(self):
        return self.secure

    def query_permission(self):
        return self.query

    def probe(self, constraints=None):
        self.probe_calls.append(constraints)
        if self.probe_error is not None:
            raise self.probe_error

    def open_capture(self, rate, channels, frames_per_buffer, callback, device_id=None):
        if self.open_error is not None:
            raise self.open_error
        stream = FakeCaptureStream(callback, frames_per_buffer, channels)
        self.streams.append(stream)
        stream.feed(self.prefill_chunks)
        return stream

    def open_output(self, rate, channels, callback):
        output = FakeOutputStream(callback)
        self.outputs.append(output)
        return output

    def list_devices(self, driver_filter=None):
        return [d for d in self.devices if driver_filter is None or d["driver"] == driver_filter]


class ManualClock:
    """Recording clock advanced by the test."""

    def __init__(self):
        self.callback = None

    def start(self, callback):
        self.callback = callback

    def stop(self):
        self.callback = None

    def tick(self, count=1):
        for _ in range(count):
            if self.callback is not None:
                self.callback()


class FakePlaybackElement(PlaybackElement):
    """Element with a manually advanced clock."""

    def __init__(self, duration, fail_on=()):
        super().__init__()
        self._duration = duration
        self.time = 0.0
        self.fail_on = set(fail_on)
        self.play_calls = 0
        self.seeks = []

    @property
    def duration(self):
        return self._duration

    @property
    def current_time(self):
        return self.time

    def load(self):
        if "load" in self.fail_on:
            raise RuntimeError("cannot decode")

    def play(self):
        if "play" in self.fail_on:
            raise RuntimeError("playback failed")
        self.play_calls += 1
        self.paused = False

    def pause(self):
        self.paused = True

    def seek(self, seconds):
        self.seeks.append(seconds)
        self.time = min(seconds, self._duration)
        self.ended = self.time >= self._duration

    def advance(self, seconds):
        if self.paused:
            return
        self.time = min(self.time + seconds, self._duration)
        if self.time >= self._duration:
            self.ended = True
            self.paused = True


def make_track(track_id, duration, volume=1.0, is_muted=False, is_solo=False):
    return SimpleNamespace(
        id=track_id, volume=volume, is_muted=is_muted, is_solo=is_solo, duration_seconds=duration
    )


@pytest.fixture
def config(tmp_path):
    """Defaults only: points at a config file that does not exist."""
    cfg = AppConfig(config_path=tmp_path / "missing.yml")
    cfg.set("output_dir", str(tmp_path / "recordings"))
    return cfg


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def tone():
    return make_tone(1.0)


@pytest.fixture
def wav_blob():
    """Two seconds of 16 kHz mono tone as WAV."""
    return encode_wav(make_tone(2.0), 16000)


@pytest.fixture
def flac_blob():
    return encode_blob(make_tone(1.5), 16000, "FLAC", "PCM_16", "audio/flac")


@pytest.fixture
def temp_audio_dir(tmp_path):
    """Provide temporary audio directory for tests."""
    audio_dir = tmp_path / "audio"
    audio_dir.mkdir(parents=True, exist_ok=True)
    return audio_dir
