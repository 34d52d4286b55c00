"""AI transformation boundary tests."""

import base64

import pytest

from voxstudio.core.ai import (
    TransformationStatus,
    encode_clip,
    generation_parameters,
    map_inference_status,
    validate_clip_duration,
)
from voxstudio.core.encoding import RawAudioBlob
from voxstudio.core.errors import ClipDurationError


@pytest.mark.parametrize(
    "word, status",
    [
        ("starting", TransformationStatus.PENDING),
        ("processing", TransformationStatus.PROCESSING),
        ("succeeded", TransformationStatus.COMPLETED),
        ("failed", TransformationStatus.FAILED),
        ("canceled", TransformationStatus.CANCELLED),
        (" Succeeded ", TransformationStatus.COMPLETED),
    ],
)
def test_map_inference_status(word, status):
    assert map_inference_status(word) is status


def test_unknown_inference_status():
    with pytest.raises(ValueError):
        map_inference_status("queued")


def test_terminal_statuses():
    terminal = {s for s in TransformationStatus if s.is_terminal}
    assert terminal == {
        TransformationStatus.COMPLETED,
        TransformationStatus.FAILED,
        TransformationStatus.CANCELLED,
    }


@pytest.mark.parametrize("seconds", [0.5, 5.0, 10.0, 10.1])
def test_clip_duration_accepted(seconds):
    validate_clip_duration(seconds)


def test_clip_too_long():
    with pytest.raises(ClipDurationError) as exc_info:
        validate_clip_duration(12.4)
    assert "10 seconds or shorter" in exc_info.value.message
    assert exc_info.value.message.endswith("0:12")


def test_clip_too_short():
    with pytest.raises(ClipDurationError) as exc_info:
        validate_clip_duration(0.2)
    assert "at least 0.5 seconds" in exc_info.value.message


def test_encode_clip_as_data_url():
    blob = RawAudioBlob(data=b"\x00\x01abc", mime_type="audio/ogg;codecs=opus")
    url = encode_clip(blob, duration=3.0)

    prefix = "data:audio/ogg;codecs=opus;base64,"
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):]) == blob.data


def test_encode_clip_validates_duration():
    with pytest.raises(ClipDurationError):
        encode_clip(RawAudioBlob(b"x", "audio/wav"), duration=30.0)


@pytest.mark.parametrize(
    "duration, temperature, expected",
    [
        (None, None, (15, 1.0)),
        (3, 0.01, (8, 0.1)),
        (45, 5.0, (30, 2.0)),
        (20, 0.7, (20, 0.7)),
    ],
)
def test_generation_parameters_are_bounded(duration, temperature, expected):
    params = generation_parameters(duration, temperature)
    assert (params["duration"], params["temperature"]) == expected
    assert params["continuation"] is False
