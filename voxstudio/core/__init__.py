"""Core recording, playback and rendering pipeline for VoxStudio."""

from .analyzer import LevelAnalyzer, LiveWaveform
from .backend import CaptureBackend, PyAudioBackend, detect_driver_type
from .config import AppConfig
from .duration import DurationResolver, resolve_duration, resolve_duration_or_estimate
from .effects import EffectKind, EffectParameters, EffectsProcessor
from .encoding import ChunkEncoder, RawAudioBlob, select_container
from .errors import (
    CaptureError,
    ClipDurationError,
    DurationResolutionError,
    FailureKind,
    RecordingError,
    RenderError,
    StudioError,
    TrackLimitError,
    TrackNotFoundError,
)
from .log import StudioLog
from .permissions import CaptureGate, PermissionStatus
from .recorder import Recorder, RecorderEvent, RecorderState
from .sessions import AudioSessionStore, PlaybackHandles, TrackSessionStore
from .storage import StorageManager
from .tracks import JsonTrackRepository, Track, TrackManager
from .transport import MultiTrackTransport, PlaybackElement, StreamPlaybackElement, format_time
from .wav import encode_wav

__all__ = [
    "AppConfig",
    "AudioSessionStore",
    "CaptureBackend",
    "CaptureError",
    "CaptureGate",
    "ChunkEncoder",
    "ClipDurationError",
    "DurationResolutionError",
    "DurationResolver",
    "EffectKind",
    "EffectParameters",
    "EffectsProcessor",
    "FailureKind",
    "JsonTrackRepository",
    "LevelAnalyzer",
    "LiveWaveform",
    "MultiTrackTransport",
    "PermissionStatus",
    "PlaybackElement",
    "PlaybackHandles",
    "PyAudioBackend",
    "RawAudioBlob",
    "Recorder",
    "RecorderEvent",
    "RecorderState",
    "RecordingError",
    "RenderError",
    "StorageManager",
    "StreamPlaybackElement",
    "StudioError",
    "StudioLog",
    "Track",
    "TrackLimitError",
    "TrackManager",
    "TrackNotFoundError",
    "TrackSessionStore",
    "detect_driver_type",
    "encode_wav",
    "format_time",
    "resolve_duration",
    "resolve_duration_or_estimate",
    "select_container",
]
