"""Tracks: persisted records, a local repository and the track manager.

The hosted database of the studio is stood in for by
:class:`JsonTrackRepository`, a single JSON file in the output directory.
The repository assigns ids and timestamps; :class:`TrackManager` owns the
rules (per-project limit, ordering, solo and mute semantics) and keeps the
per-track playback sessions in step with the records.
"""

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import soundfile as sf
from loguru import logger

from .config import DEFAULT_TRACK_SAMPLE_RATE, MAX_TRACKS_PER_PROJECT
from .duration import DurationResolver, resolve_duration_or_estimate
from .encoding import RawAudioBlob
from .errors import TrackLimitError, TrackNotFoundError
from .sessions import TrackSessionStore
from .storage import StorageManager, load_blob

LOCAL_USER = 'local'


@dataclass
class Track:
    """A persisted track record."""

    id: str
    project_id: str
    user_id: str
    name: str
    description: str = ''
    audio_path: Optional[str] = None
    duration_seconds: float = 0.0
    sample_rate: int = DEFAULT_TRACK_SAMPLE_RATE
    effects_settings: Dict[str, Any] = field(default_factory=dict)
    volume: float = 1.0
    pan: float = 0.0
    is_muted: bool = False
    is_solo: bool = False
    track_order: int = 1
    created_at: str = ''
    updated_at: str = ''

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Track':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, float(value)))


def blob_sample_rate(blob: RawAudioBlob, default: int = DEFAULT_TRACK_SAMPLE_RATE) -> int:
    """Sample rate declared by *blob*, or *default* when it cannot be read."""
    try:
        rate = int(sf.info(blob.open()).samplerate)
    except (RuntimeError, ValueError, TypeError, OSError) as e:
        logger.debug(f'Could not read sample rate, using {default}: {e}')
        return default
    return rate if rate > 0 else default


class TrackRepository:
    """Persistence boundary for :class:`Track` records."""

    def insert(self, values: dict) -> Track:
        """Persist a new record; the repository assigns id and timestamps."""
        raise NotImplementedError

    def update(self, track_id: str, updates: dict) -> Track:
        raise NotImplementedError

    def delete(self, track_id: str) -> None:
        raise NotImplementedError

    def get(self, track_id: str) -> Optional[Track]:
        raise NotImplementedError

    def list(self, project_id: str, user_id: Optional[str] = None) -> List[Track]:
        """Tracks of *project_id* ordered by ``track_order``."""
        raise NotImplementedError


class JsonTrackRepository(TrackRepository):
    """Stores every track in one JSON document.

    Args:
        path: JSON file; created on first write.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        content = json.loads(self.path.read_text(encoding='utf-8') or '{}')
        return {row['id']: row for row in content.get('tracks', [])}

    def _write(self, rows: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {'tracks': list(rows.values())}
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding='utf-8')

    def insert(self, values: dict) -> Track:
        stamp = _now()
        track = Track.from_dict({**values, 'id': str(uuid.uuid4()), 'created_at': stamp, 'updated_at': stamp})
        with self._lock:
            rows = self._read()
            rows[track.id] = track.to_dict()
            self._write(rows)
        return track

    def update(self, track_id: str, updates: dict) -> Track:
        with self._lock:
            rows = self._read()
            if track_id not in rows:
                raise TrackNotFoundError(track_id)
            row = {**rows[track_id], **updates, 'id': track_id, 'updated_at': _now()}
            rows[track_id] = Track.from_dict(row).to_dict()
            self._write(rows)
        return Track.from_dict(rows[track_id])

    def delete(self, track_id: str) -> None:
        with self._lock:
            rows = self._read()
            if rows.pop(track_id, None) is None:
                raise TrackNotFoundError(track_id)
            self._write(rows)

    def get(self, track_id: str) -> Optional[Track]:
        with self._lock:
            row = self._read().get(track_id)
        return Track.from_dict(row) if row else None

    def list(self, project_id: str, user_id: Optional[str] = None) -> List[Track]:
        with self._lock:
            rows = self._read().values()
        tracks = [
            Track.from_dict(row) for row in rows
            if row['project_id'] == project_id and (user_id is None or row['user_id'] == user_id)
        ]
        return sorted(tracks, key=lambda t: (t.track_order, t.created_at))


class TrackManager:
    """Track lifecycle plus mix controls for one user.

    Args:
        repository: Where records live.
        sessions: Per-track playback sessions, kept in step with records.
        storage: Where track audio is written; ``None`` keeps audio in memory only.
        resolver: Duration resolver for new blobs.
        max_per_project: Track limit per (project, user).
        user_id: Owner of created tracks.
    """

    def __init__(
        self,
        repository: TrackRepository,
        sessions: Optional[TrackSessionStore] = None,
        storage: Optional[StorageManager] = None,
        resolver: Optional[DurationResolver] = None,
        max_per_project: int = MAX_TRACKS_PER_PROJECT,
        user_id: str = LOCAL_USER,
    ) -> None:
        self.repository = repository
        self.sessions = sessions if sessions is not None else TrackSessionStore(resolver=resolver)
        self.storage = storage
        self.resolver = resolver
        self.max_per_project = max_per_project
        self.user_id = user_id

    def _require(self, track_id: str) -> Track:
        track = self.repository.get(track_id)
        if track is None:
            raise TrackNotFoundError(track_id)
        return track

    def list_tracks(self, project_id: str) -> List[Track]:
        return self.repository.list(project_id, self.user_id)

    def create_track(
        self,
        project_id: str,
        name: str,
        blob: RawAudioBlob,
        description: Optional[str] = None,
    ) -> Track:
        """Persist *blob* as a new track at the end of the project.

        Raises:
            TrackLimitError: If the project already has the maximum number of tracks.
        """
        existing = self.list_tracks(project_id)
        if len(existing) >= self.max_per_project:
            raise TrackLimitError(self.max_per_project)

        duration = resolve_duration_or_estimate(blob, self.resolver)
        max_order = max([0] + [t.track_order for t in existing])
        track = self.repository.insert({
            'project_id': project_id,
            'user_id': self.user_id,
            'name': name,
            'description': description or '',
            'duration_seconds': duration,
            'sample_rate': blob_sample_rate(blob),
            'effects_settings': {},
            'volume': 1.0,
            'pan': 0.0,
            'is_muted': False,
            'is_solo': False,
            'track_order': max_order + 1,
        })
        if self.storage is not None:
            path = self.storage.save_blob(blob, f"track-{track.id}")
            track = self.repository.update(track.id, {'audio_path': str(path)})

        self.sessions.create_track_session(track.id, blob)
        logger.info(f'Created track {track.name!r} #{track.track_order} ({duration:.2f}s)')
        return track

    def update_track(self, track_id: str, **updates) -> Track:
        return self.repository.update(track_id, updates)

    def delete_track(self, track_id: str) -> None:
        track = self._require(track_id)
        self.repository.delete(track_id)
        self.sessions.clear_track_session(track_id)
        if self.storage is not None and track.audio_path:
            self.storage.delete_recording(Path(track.audio_path).name)
        logger.info(f'Deleted track {track_id}')

    def load_tracks(self, project_id: str) -> List[Track]:
        """Return ordered tracks, opening sessions for any stored audio."""
        tracks = self.list_tracks(project_id)
        for track in tracks:
            if track.id in self.sessions or not track.audio_path:
                continue
            path = Path(track.audio_path)
            if not path.is_file():
                logger.warning(f'Audio for track {track.id} missing: {path}')
                continue
            self.sessions.create_track_session(track.id, load_blob(path))
        return tracks

    # ------------------------------------------------------------------
    # Mix controls
    # ------------------------------------------------------------------

    def set_track_volume(self, track_id: str, volume: float) -> Track:
        return self.update_track(track_id, volume=_clamp(volume, 0.0, 1.0))

    def set_track_pan(self, track_id: str, pan: float) -> Track:
        return self.update_track(track_id, pan=_clamp(pan, -1.0, 1.0))

    def mute_track(self, track_id: str, muted: bool) -> Track:
        return self.update_track(track_id, is_muted=bool(muted))

    def solo_track(self, track_id: str, solo: bool) -> Track:
        """Solo or un-solo a track.

        Soloing unmutes the track and clears solo on every other track of the
        project; un-soloing only clears the flag.
        """
        track = self._require(track_id)
        if not solo:
            return self.update_track(track_id, is_solo=False)
        for other in self.list_tracks(track.project_id):
            if other.id != track_id and other.is_solo:
                self.update_track(other.id, is_solo=False)
        return self.update_track(track_id, is_solo=True, is_muted=False)

    def reorder_tracks(self, project_id: str, track_ids: Iterable[str]) -> List[Track]:
        """Assign ``track_order`` 1..N following *track_ids*."""
        for index, track_id in enumerate(track_ids, start=1):
            self.update_track(track_id, track_order=index)
        return self.list_tracks(project_id)
