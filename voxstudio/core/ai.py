"""Client-side half of the AI transformation boundary.

Only the parts that run before a clip leaves the machine live here: clip
length validation, data-URL encoding, request parameter bounds and the
mapping from the inference service's status words to ours.
"""

import base64
from enum import Enum
from typing import Optional

from loguru import logger

from .config import MAX_CLIP_SECONDS, MIN_CLIP_SECONDS
from .encoding import RawAudioBlob
from .errors import ClipDurationError
from .transport import format_time


class TransformationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransformationStatus.COMPLETED, TransformationStatus.FAILED, TransformationStatus.CANCELLED)


_INFERENCE_STATUS = {
    'starting': TransformationStatus.PENDING,
    'processing': TransformationStatus.PROCESSING,
    'succeeded': TransformationStatus.COMPLETED,
    'failed': TransformationStatus.FAILED,
    'canceled': TransformationStatus.CANCELLED,
}


def map_inference_status(status: str) -> TransformationStatus:
    """Translate an inference-service status word.

    Raises:
        ValueError: For a status the service is not known to send.
    """
    try:
        return _INFERENCE_STATUS[status.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown inference status: {status!r}")


def validate_clip_duration(
    duration: float,
    min_seconds: float = MIN_CLIP_SECONDS,
    max_seconds: float = MAX_CLIP_SECONDS,
) -> None:
    """Reject clips outside ``[min_seconds, max_seconds]``.

    The upper bound sits slightly above 10 s so that encoder padding on a
    ten-second take does not push it out.
    """
    if duration > max_seconds:
        raise ClipDurationError(
            f"The input audio must be 10 seconds or shorter for AI transformation. "
            f"Current duration: {format_time(duration)}"
        )
    if duration < min_seconds:
        raise ClipDurationError(
            f"Audio duration is too short. Please record at least {min_seconds:g} seconds of audio."
        )


def encode_clip(blob: RawAudioBlob, duration: Optional[float] = None) -> str:
    """Return *blob* as a ``data:<mime>;base64,...`` URL.

    Args:
        blob: Encoded clip.
        duration: Clip length in seconds; validated when given.
    """
    if duration is not None:
        validate_clip_duration(duration)
    payload = base64.b64encode(blob.data).decode('ascii')
    logger.debug(f'Encoded clip for transformation: {blob.size} bytes')
    return f"data:{blob.mime_type};base64,{payload}"


def generation_parameters(duration: Optional[float] = None, temperature: Optional[float] = None) -> dict:
    """Bounded generation parameters: duration 8..30 s, temperature 0.1..2.0."""
    return {
        'duration': min(30, max(8, duration or 15)),
        'temperature': min(2.0, max(0.1, temperature or 1.0)),
        'continuation': False,
    }
