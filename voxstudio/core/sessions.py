"""Playback-aware session stores.

An :class:`AudioSession` models the single take currently being worked on; a
:class:`TrackSession` exists per saved track.  Each session holds a
*playable handle* into its blob, issued by :class:`PlaybackHandles`.  A handle
is released exactly once: when its session is replaced, cleared, or its
track is deleted.

Stores are explicit objects passed to whoever needs them, and every entry of
:class:`TrackSessionStore` is written only through the lifecycle methods for
its own key.  Waveform peaks are generated on a worker thread; a result that
arrives after its session was superseded is discarded.
"""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from .duration import DurationResolver, resolve_duration_or_estimate
from .encoding import RawAudioBlob
from .wav import decode_blob

WAVEFORM_POINTS = 200


@dataclass(frozen=True)
class WaveformData:
    peaks: List[float]
    duration: float


def generate_waveform(blob: RawAudioBlob, points: int = WAVEFORM_POINTS) -> WaveformData:
    """Peak envelope of *blob*: max absolute amplitude per bucket, in [0, 1]."""
    buffer, sample_rate = decode_blob(blob)
    mono = np.max(np.abs(buffer), axis=0) if buffer.size else np.zeros(0, dtype=np.float32)
    duration = mono.size / float(sample_rate) if sample_rate else 0.0
    if mono.size == 0:
        return WaveformData(peaks=[0.0] * points, duration=duration)
    buckets = np.array_split(mono, min(points, mono.size))
    peaks = [float(min(bucket.max(), 1.0)) for bucket in buckets]
    return WaveformData(peaks=peaks, duration=duration)


class PlaybackHandles:
    """Registry of process-local ``blob:`` handles.

    Thread-safe.  Revoking an unknown or already revoked handle is logged
    and reported, never silently ignored.
    """

    def __init__(self) -> None:
        self._blobs: Dict[str, RawAudioBlob] = {}
        self._lock = threading.Lock()

    def create(self, blob: RawAudioBlob) -> str:
        handle = f"blob:voxstudio/{uuid.uuid4()}"
        with self._lock:
            self._blobs[handle] = blob
        return handle

    def resolve(self, handle: str) -> Optional[RawAudioBlob]:
        with self._lock:
            return self._blobs.get(handle)

    def revoke(self, handle: str) -> bool:
        with self._lock:
            released = self._blobs.pop(handle, None) is not None
        if not released:
            logger.warning(f'Playback handle already released: {handle}')
        return released

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


@dataclass
class AudioSession:
    """Playback state for one blob."""

    owner_id: str
    audio_blob: RawAudioBlob
    playable_url: str
    duration: float
    waveform: Optional[WaveformData] = None
    is_playing: bool = False
    current_time: float = 0.0


@dataclass
class TrackSession(AudioSession):
    """Per-track session keyed by track id (``owner_id``)."""

    @property
    def track_id(self) -> str:
        return self.owner_id


class _WaveformWorker:
    """Single background thread generating waveform peaks."""

    def __init__(self) -> None:
        self._executor: Optional[ThreadPoolExecutor] = None

    def submit(self, fn, *args) -> Future:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='waveform')
        return self._executor.submit(fn, *args)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


class AudioSessionStore:
    """Holds the single "current" take."""

    def __init__(
        self,
        handles: Optional[PlaybackHandles] = None,
        resolver: Optional[DurationResolver] = None,
    ) -> None:
        self.handles = handles if handles is not None else PlaybackHandles()
        self._resolver = resolver
        self.current: Optional[AudioSession] = None

    def create_session(self, owner_id: str, blob: RawAudioBlob) -> AudioSession:
        """Replace the current take, releasing the superseded handle first."""
        self.clear_session()
        duration = resolve_duration_or_estimate(blob, self._resolver)
        self.current = AudioSession(
            owner_id=owner_id,
            audio_blob=blob,
            playable_url=self.handles.create(blob),
            duration=duration,
        )
        logger.info(f'Session created for {owner_id} ({duration:.2f}s)')
        return self.current

    def update_session(self, **updates) -> Optional[AudioSession]:
        if self.current is None:
            return None
        if 'audio_blob' in updates and 'playable_url' not in updates:
            self.handles.revoke(self.current.playable_url)
            updates['playable_url'] = self.handles.create(updates['audio_blob'])
        self.current = replace(self.current, **updates)
        return self.current

    def clear_session(self) -> None:
        if self.current is not None:
            self.handles.revoke(self.current.playable_url)
            self.current = None

    def play(self) -> None:
        self.update_session(is_playing=True)

    def pause(self) -> None:
        self.update_session(is_playing=False)

    def seek(self, time: float) -> None:
        self.update_session(current_time=max(0.0, float(time)))


class TrackSessionStore:
    """Keyed store of :class:`TrackSession` objects, one per track."""

    def __init__(
        self,
        handles: Optional[PlaybackHandles] = None,
        resolver: Optional[DurationResolver] = None,
        waveform_points: int = WAVEFORM_POINTS,
    ) -> None:
        self.handles = handles if handles is not None else PlaybackHandles()
        self._resolver = resolver
        self._sessions: Dict[str, TrackSession] = {}
        self._lock = threading.Lock()
        self._worker = _WaveformWorker()
        self._waveform_points = waveform_points

    def get(self, track_id: str) -> Optional[TrackSession]:
        with self._lock:
            return self._sessions.get(track_id)

    def snapshot(self) -> Dict[str, TrackSession]:
        """Copy of the mapping, safe to iterate while tracks change."""
        with self._lock:
            return dict(self._sessions)

    def __contains__(self, track_id: str) -> bool:
        with self._lock:
            return track_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_track_session(self, track_id: str, blob: RawAudioBlob) -> TrackSession:
        """Create (or replace) the session for *track_id*."""
        duration = resolve_duration_or_estimate(blob, self._resolver)
        session = TrackSession(
            owner_id=track_id,
            audio_blob=blob,
            playable_url=self.handles.create(blob),
            duration=duration,
        )
        with self._lock:
            superseded = self._sessions.get(track_id)
            self._sessions[track_id] = session
        if superseded is not None:
            self.handles.revoke(superseded.playable_url)
        return session

    def update_track_session(self, track_id: str, **updates) -> Optional[TrackSession]:
        with self._lock:
            current = self._sessions.get(track_id)
            if current is None:
                return None
            updated = replace(current, **updates)
            self._sessions[track_id] = updated
            return updated

    def clear_track_session(self, track_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(track_id, None)
        if session is not None:
            self.handles.revoke(session.playable_url)

    def clear_all_sessions(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            self.handles.revoke(session.playable_url)

    def play_track(self, track_id: str) -> None:
        self.update_track_session(track_id, is_playing=True)

    def pause_track(self, track_id: str) -> None:
        self.update_track_session(track_id, is_playing=False)

    def seek_track(self, track_id: str, time: float) -> None:
        self.update_track_session(track_id, current_time=max(0.0, float(time)))

    def request_waveform(self, track_id: str) -> Optional[Future]:
        """Generate peaks in the background for sessions that lack them.

        The returned future resolves to ``True`` once the peaks are attached,
        or ``False`` when the session was replaced or cleared meanwhile.
        """
        session = self.get(track_id)
        if session is None or session.waveform is not None:
            return None
        return self._worker.submit(
            self._build_waveform, track_id, session.playable_url, session.audio_blob
        )

    def _build_waveform(self, track_id: str, handle: str, blob: RawAudioBlob) -> bool:
        try:
            waveform = generate_waveform(blob, self._waveform_points)
        except (RuntimeError, ValueError) as error:
            logger.error(f'Error generating waveform for track {track_id}: {error}')
            raise
        with self._lock:
            current = self._sessions.get(track_id)
            if current is None or current.playable_url != handle:
                logger.debug(f'Dropping waveform for superseded session {track_id}')
                return False
            self._sessions[track_id] = replace(current, waveform=waveform)
        return True

    def close(self) -> None:
        self._worker.shutdown()
        self.clear_all_sessions()
