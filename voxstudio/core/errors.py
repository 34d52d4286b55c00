"""Exception hierarchy for VoxStudio.

Every failure the pipeline can surface carries a specific, user-facing
``message``.  Capture failures are additionally tagged with a
:class:`FailureKind` whose remediation hint is shown next to a retry action.
"""

from enum import Enum
from typing import List, Optional


class FailureKind(str, Enum):
    """Normalised reasons a microphone probe or capture can fail."""

    ACCESS_DENIED = "access-denied"
    NO_DEVICE = "no-device-found"
    DEVICE_BUSY = "device-busy"
    UNSUPPORTED_CONSTRAINTS = "unsupported-constraints"
    NOT_SUPPORTED = "not-supported"
    CANCELLED = "cancelled"
    INSECURE_CONTEXT = "insecure-context"
    UNKNOWN = "unknown"


REMEDIATION = {
    FailureKind.ACCESS_DENIED: (
        "Microphone access was denied. Grant this terminal access to the "
        "microphone in your system privacy settings, then try again."
    ),
    FailureKind.NO_DEVICE: (
        "No microphone was found. Please connect a microphone to your device "
        "and try again."
    ),
    FailureKind.DEVICE_BUSY: (
        "Your microphone is currently being used by another application. "
        "Please close other apps that might be using the microphone and try again."
    ),
    FailureKind.UNSUPPORTED_CONSTRAINTS: (
        "Your microphone doesn't support the required settings. Try another "
        "sample rate with --rate or select a different device."
    ),
    FailureKind.NOT_SUPPORTED: (
        "Audio recording is not supported on this system. Install PortAudio "
        "and make sure an audio host API (ALSA, PulseAudio, CoreAudio, WASAPI) "
        "is available."
    ),
    FailureKind.CANCELLED: "Microphone access was cancelled. Please try again.",
    FailureKind.INSECURE_CONTEXT: (
        "Microphone capture is disabled for remote sessions. Run VoxStudio "
        "locally or set capture.allow_remote: true in .voxstudio.yml."
    ),
}


class StudioError(Exception):
    """Base class for all VoxStudio errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CaptureError(StudioError):
    """Microphone probe or capture stream failure."""

    def __init__(self, kind: FailureKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        if kind in REMEDIATION:
            message = REMEDIATION[kind]
        else:
            message = (
                f"Microphone access failed: {detail or 'Unknown error'}. "
                "Please check your audio settings and try again."
            )
        super().__init__(message)


class RecordingError(StudioError):
    """Encoder fault during an active recording; the take is unrecoverable."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Recording error: {detail}")


class DurationStrategyError(StudioError):
    """A single duration strategy could not produce a usable value."""

    def __init__(self, strategy: str, detail: str) -> None:
        self.strategy = strategy
        super().__init__(f"{strategy}: {detail}")


class DurationResolutionError(StudioError):
    """Every duration strategy was exhausted."""

    def __init__(self, failures: List[DurationStrategyError]) -> None:
        self.failures = list(failures)
        reasons = "; ".join(f.message for f in self.failures) or "no strategies configured"
        super().__init__(f"Could not determine audio duration ({reasons})")


class RenderError(StudioError):
    """Effects processing failed; no partial output is produced."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Effects processing failed: {detail}")


class TrackLimitError(StudioError):
    """A project already holds the maximum number of tracks."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum of {limit} tracks per project allowed")


class TrackNotFoundError(StudioError):
    """No track with the given id exists."""

    def __init__(self, track_id: str) -> None:
        self.track_id = track_id
        super().__init__(f"Track not found: {track_id}")


class ClipDurationError(StudioError):
    """Clip is outside the bounds accepted by the AI transformation service."""
