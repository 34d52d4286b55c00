"""Multi-track transport: one logical playhead over per-track playback elements.

Each track owns a :class:`PlaybackElement` with its own clock.  The transport
never mixes audio itself; it drives the elements (play, pause, seek) and
pushes each track's effective gain to its element on every :meth:`tick`.
Elements drift independently and the tick loop re-reads the playhead from
whichever element is actually advancing.

A track whose element fails to load or play is logged, silenced and left out
of playhead detection; the other tracks keep playing.
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
from loguru import logger

from .backend import CaptureBackend, OutputStream
from .encoding import RawAudioBlob
from .errors import StudioError
from .wav import decode_blob

SKIP_SECONDS = 10.0

# failures an element may raise without taking the transport down
ELEMENT_ERRORS = (StudioError, OSError, RuntimeError, ValueError)


def format_time(seconds: float) -> str:
    """Format *seconds* as ``m:ss``; non-finite or zero gives ``0:00``."""
    if not seconds or not math.isfinite(seconds):
        return '0:00'
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f'{mins}:{secs:02d}'


class PlaybackElement:
    """One independently clocked player, modelled on a media element.

    ``paused`` is true until :meth:`play` and again once the element reaches
    its own end (``ended``).  ``volume`` and ``muted`` are written by the
    transport and take effect on the next rendered block.
    """

    def __init__(self) -> None:
        self.volume = 1.0
        self.muted = False
        self.paused = True
        self.ended = False

    @property
    def duration(self) -> float:
        raise NotImplementedError

    @property
    def current_time(self) -> float:
        raise NotImplementedError

    def load(self) -> None:
        """Prepare the element; may raise when the source is unusable."""

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def seek(self, seconds: float) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release any output resources."""


class StreamPlaybackElement(PlaybackElement):
    """Plays a decoded blob through a backend output stream.

    The position advances in the output callback, so :attr:`current_time`
    is the element's own clock, not the transport's.
    """

    def __init__(self, blob: RawAudioBlob, backend: CaptureBackend) -> None:
        super().__init__()
        self._blob = blob
        self._backend = backend
        self._buffer: Optional[np.ndarray] = None
        self._rate = 0
        self._position = 0
        self._stream: Optional[OutputStream] = None
        self._lock = threading.Lock()

    def load(self) -> None:
        if self._buffer is None:
            self._buffer, self._rate = decode_blob(self._blob)

    @property
    def _frames(self) -> int:
        return 0 if self._buffer is None else self._buffer.shape[1]

    @property
    def duration(self) -> float:
        return self._frames / float(self._rate) if self._rate else 0.0

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._position / float(self._rate) if self._rate else 0.0

    def _render(self, frame_count: int) -> np.ndarray:
        channels = self._buffer.shape[0]
        block = np.zeros((channels, frame_count), dtype=np.float32)
        with self._lock:
            if self.paused:
                return block.T
            start = self._position
            stop = min(start + frame_count, self._frames)
            block[:, :stop - start] = self._buffer[:, start:stop]
            self._position = stop
            if stop >= self._frames:
                self.ended = True
                self.paused = True
            gain = 0.0 if self.muted else self.volume
        return (block * gain).T

    def play(self) -> None:
        self.load()
        if self._stream is None:
            self._stream = self._backend.open_output(self._rate, self._buffer.shape[0], self._render)
        with self._lock:
            if self.ended:
                self._position = 0
                self.ended = False
            self.paused = False
        self._stream.start()

    def pause(self) -> None:
        with self._lock:
            self.paused = True
        if self._stream is not None:
            self._stream.stop()

    def seek(self, seconds: float) -> None:
        self.load()
        with self._lock:
            self._position = min(max(0, int(round(seconds * self._rate))), self._frames)
            self.ended = self._position >= self._frames and self._frames > 0

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None


@dataclass
class MixState:
    """Per-track mix settings as last synced from the track list."""

    volume: float = 1.0
    is_muted: bool = False
    is_solo: bool = False
    duration_seconds: float = 0.0


class MultiTrackTransport:
    """Logical transport over many :class:`PlaybackElement` objects.

    Args:
        master_volume: Gain applied on top of every track volume.
    """

    def __init__(self, master_volume: float = 1.0) -> None:
        self.master_volume = master_volume
        self.current_time = 0.0
        self.is_playing = False
        self._elements: Dict[str, PlaybackElement] = {}
        self._mix: Dict[str, MixState] = {}
        self._failed: set = set()

    # ------------------------------------------------------------------
    # Track membership
    # ------------------------------------------------------------------

    @property
    def track_ids(self) -> List[str]:
        return list(self._elements)

    def element(self, track_id: str) -> Optional[PlaybackElement]:
        return self._elements.get(track_id)

    def is_failed(self, track_id: str) -> bool:
        return track_id in self._failed

    def add_track(self, track, element: PlaybackElement) -> None:
        """Attach *element* as the player for *track*.

        *track* is anything with ``id``, ``volume``, ``is_muted``,
        ``is_solo`` and ``duration_seconds`` attributes.
        """
        self._elements[track.id] = element
        self.update_track(track)
        try:
            element.load()
        except ELEMENT_ERRORS as error:
            self._isolate(track.id, 'load', error)

    def update_track(self, track) -> None:
        """Record new mix settings; they reach the element on the next tick."""
        self._mix[track.id] = MixState(
            volume=float(track.volume),
            is_muted=bool(track.is_muted),
            is_solo=bool(track.is_solo),
            duration_seconds=float(track.duration_seconds),
        )

    def remove_track(self, track_id: str) -> None:
        element = self._elements.pop(track_id, None)
        self._mix.pop(track_id, None)
        self._failed.discard(track_id)
        if element is not None:
            try:
                element.pause()
            except ELEMENT_ERRORS as error:
                logger.warning(f'Error pausing removed track {track_id}: {error}')
            element.close()

    def sync_tracks(self, tracks: Iterable, element_factory: Callable[[object], PlaybackElement]) -> None:
        """Reconcile elements with *tracks*: add new, update known, drop removed."""
        current = {}
        for track in tracks:
            current[track.id] = track
            if track.id in self._elements:
                self.update_track(track)
            else:
                self.add_track(track, element_factory(track))
        for track_id in [tid for tid in self._elements if tid not in current]:
            self.remove_track(track_id)

    def close(self) -> None:
        for track_id in list(self._elements):
            self.remove_track(track_id)

    # ------------------------------------------------------------------
    # Mix rules
    # ------------------------------------------------------------------

    @property
    def duration(self) -> float:
        """Logical duration: the longest track."""
        return max([0.0] + [mix.duration_seconds for mix in self._mix.values()])

    @property
    def any_solo(self) -> bool:
        return any(mix.is_solo for mix in self._mix.values())

    def is_audible(self, track_id: str) -> bool:
        mix = self._mix[track_id]
        return not mix.is_muted and (not self.any_solo or mix.is_solo)

    def effective_gain(self, track_id: str) -> float:
        mix = self._mix[track_id]
        gain = mix.volume * self.master_volume * (0 if mix.is_muted else 1)
        return gain if self.is_audible(track_id) else 0.0

    def apply_mix(self) -> None:
        for track_id, element in self._elements.items():
            element.volume = self.effective_gain(track_id)
            element.muted = not self.is_audible(track_id) or track_id in self._failed

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    def _live(self):
        return [(tid, el) for tid, el in self._elements.items() if tid not in self._failed]

    def _isolate(self, track_id: str, action: str, error: BaseException) -> None:
        logger.error(f'Track {track_id} failed to {action}: {error}')
        self._failed.add(track_id)
        element = self._elements.get(track_id)
        if element is not None:
            element.muted = True

    def play(self) -> None:
        """Start every paused element from the logical playhead."""
        self.apply_mix()
        self.is_playing = True
        for track_id, element in self._live():
            if not element.paused:
                continue
            try:
                element.seek(self.current_time)
                if element.ended:
                    # shorter track already finished: stays stopped
                    continue
                element.play()
            except ELEMENT_ERRORS as error:
                self._isolate(track_id, 'play', error)
        logger.debug(f'Transport playing from {self.current_time:.2f}s')

    def pause(self) -> None:
        self.is_playing = False
        for track_id, element in self._live():
            if element.paused:
                continue
            try:
                element.pause()
            except ELEMENT_ERRORS as error:
                self._isolate(track_id, 'pause', error)

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def seek(self, seconds: float) -> None:
        """Move every element to *seconds* in one pass, regardless of play state."""
        self.current_time = float(seconds)
        for track_id, element in self._live():
            try:
                element.seek(self.current_time)
            except ELEMENT_ERRORS as error:
                self._isolate(track_id, 'seek', error)

    def skip_back(self, seconds: float = SKIP_SECONDS) -> None:
        self.seek(max(0.0, self.current_time - seconds))

    def skip_forward(self, seconds: float = SKIP_SECONDS) -> None:
        self.seek(min(self.duration, self.current_time + seconds))

    def reset(self) -> None:
        self.pause()
        self.seek(0.0)

    def _rewind(self) -> None:
        logger.debug('Transport reached end of timeline, rewinding')
        self.is_playing = False
        self.current_time = 0.0
        for track_id, element in self._live():
            try:
                element.seek(0.0)
                element.pause()
            except ELEMENT_ERRORS as error:
                self._isolate(track_id, 'rewind', error)

    def tick(self) -> float:
        """Advance the display playhead; call once per refresh.

        Returns:
            The logical playhead after this tick.
        """
        self.apply_mix()
        if not self.is_playing:
            return self.current_time
        live = self._live()
        driver = next((el for _, el in live if not el.paused), None)
        if driver is not None:
            self.current_time = driver.current_time
            if self.current_time >= self.duration:
                self._rewind()
        elif not live or all(el.ended for _, el in live):
            self._rewind()
        return self.current_time

    @property
    def progress(self) -> float:
        """Playhead position as a percentage of the logical duration."""
        duration = self.duration
        if not duration or duration <= 0:
            return 0.0
        return min((self.current_time / duration) * 100.0, 100.0)
