"""Recording state machine for VoxStudio.

The recorder owns the capture lifecycle::

    Idle --start--> Recording --pause--> Paused --resume--> Recording
    Recording/Paused --stop--> Idle
    any --reset--> Idle      (buffered audio discarded)
    Recording/Paused --fault--> Idle   (encoder failure, take lost)

Every state change goes through :meth:`Recorder._transition`, which consults
the :data:`TRANSITIONS` table.  Operations acquire and release resources
around that single transition, so tests can drive the machine by injecting
audio chunks and clock ticks through a fake backend and a manual clock.

Concurrency
-----------
PortAudio delivers audio on its callback thread and the recording clock
ticks on its own daemon thread.  Both only touch state under
``Recorder._lock``.  Closing the capture stream blocks until the last
callback returned, which is why :meth:`Recorder.stop_recording` closes the
stream *before* finalising the encoder: every chunk emitted before stop is in
the blob.
"""

import datetime
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np
from loguru import logger

from .analyzer import LevelAnalyzer, LiveWaveform
from .backend import CaptureBackend, CaptureStream
from .config import AppConfig
from .encoding import ChunkEncoder, RawAudioBlob, select_container
from .errors import CaptureError, RecordingError
from .log import StudioLog
from .permissions import CaptureGate, PermissionStatus


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"


class RecorderEvent(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    RESET = "reset"
    FAULT = "fault"


TRANSITIONS = {
    (RecorderState.IDLE, RecorderEvent.START): RecorderState.RECORDING,
    (RecorderState.RECORDING, RecorderEvent.PAUSE): RecorderState.PAUSED,
    (RecorderState.PAUSED, RecorderEvent.RESUME): RecorderState.RECORDING,
    (RecorderState.RECORDING, RecorderEvent.STOP): RecorderState.IDLE,
    (RecorderState.PAUSED, RecorderEvent.STOP): RecorderState.IDLE,
    (RecorderState.RECORDING, RecorderEvent.FAULT): RecorderState.IDLE,
    (RecorderState.PAUSED, RecorderEvent.FAULT): RecorderState.IDLE,
    (RecorderState.IDLE, RecorderEvent.RESET): RecorderState.IDLE,
    (RecorderState.RECORDING, RecorderEvent.RESET): RecorderState.IDLE,
    (RecorderState.PAUSED, RecorderEvent.RESET): RecorderState.IDLE,
}


def next_state(state: RecorderState, event: RecorderEvent) -> Optional[RecorderState]:
    """Target state for *event* in *state*, or ``None`` if not allowed."""
    return TRANSITIONS.get((state, event))


@dataclass
class CaptureSession:
    """Observable recorder state, mutated only by the recorder."""

    is_recording: bool = False
    is_paused: bool = False
    elapsed_seconds: int = 0
    input_level: float = 0.0
    permission: PermissionStatus = PermissionStatus.UNKNOWN
    last_error: Optional[str] = None


class IntervalClock:
    """Wall-clock ticker running a callback every *interval* seconds."""

    def __init__(self, interval: float = 1.0) -> None:
        self.interval = interval
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    def start(self, callback: Callable[[], None]) -> None:
        self.stop()
        stop_event = threading.Event()

        def _run() -> None:
            while not stop_event.wait(self.interval):
                callback()

        self._stop_event = stop_event
        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop_event is None:
            return
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval * 2)
        self._stop_event = None
        self._thread = None


def _build_session_id(dt: Optional[datetime.datetime] = None, fmt: str = '%y%m%d%H%M%S') -> str:
    return (dt or datetime.datetime.now()).strftime(fmt)


class Recorder:
    """Record/pause/resume/stop lifecycle producing one :class:`RawAudioBlob`."""

    def __init__(
        self,
        backend: CaptureBackend,
        config: Optional[AppConfig] = None,
        gate: Optional[CaptureGate] = None,
        clock: Optional[IntervalClock] = None,
        studio_log: Optional[StudioLog] = None,
        device_id: Optional[int] = None,
    ) -> None:
        self._backend = backend
        self._config = config or AppConfig()
        self._gate = gate or CaptureGate(backend)
        self._clock = clock or IntervalClock(float(self._config.get('clock_interval')))
        self._studio_log = studio_log
        self._device_id = device_id

        self._rate = int(self._config.get('rate'))
        self._channels = int(self._config.get('channel'))
        self._chunk_frames = self._config.chunk_frames

        self._state = RecorderState.IDLE
        self._lock = threading.RLock()
        self._stream: Optional[CaptureStream] = None
        self._encoder: Optional[ChunkEncoder] = None
        self._pending_fault: Optional[RecordingError] = None
        self._session_id: Optional[str] = None
        self._mime_type: Optional[str] = None

        self.session = CaptureSession()
        self.analyzer = LevelAnalyzer(int(self._config.get('fft_size')))
        self.waveform = LiveWaveform()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def gate(self) -> CaptureGate:
        return self._gate

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def mime_type(self) -> Optional[str]:
        """Container MIME type committed for the current or last take."""
        return self._mime_type

    def can(self, event: RecorderEvent) -> bool:
        return next_state(self._state, event) is not None

    def _transition(self, event: RecorderEvent) -> bool:
        """Apply *event*; the only place ``_state`` changes."""
        with self._lock:
            target = next_state(self._state, event)
            if target is None:
                logger.debug(f'Ignoring {event.value} while {self._state.value}')
                return False
            logger.debug(f'Recorder {self._state.value} --{event.value}--> {target.value}')
            self._state = target
            self.session.is_recording = target is not RecorderState.IDLE
            self.session.is_paused = target is RecorderState.PAUSED
            return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_recording(self) -> bool:
        """Acquire the microphone and begin capturing.

        Returns:
            ``True`` when recording started.  On failure the reason is in
            ``session.last_error`` and the recorder stays idle.
        """
        if not self.can(RecorderEvent.START):
            logger.debug('start_recording ignored: already recording')
            return False

        self.session.last_error = None
        if not self._gate.granted and not self._gate.request_permissions():
            self.session.permission = self._gate.status
            error = self._gate.last_error
            self.session.last_error = error.message if error else 'Microphone access failed.'
            return False
        self.session.permission = self._gate.status

        container = select_container(self._rate, self._config.get('containers'))
        logger.info(f'Using container: {container.mime_type}')
        self._mime_type = container.mime_type

        with self._lock:
            self._encoder = ChunkEncoder(container, self._rate, self._channels)
            self._pending_fault = None
        self.analyzer.reset()
        self.waveform.clear()

        try:
            stream = self._backend.open_capture(
                rate=self._rate,
                channels=self._channels,
                frames_per_buffer=self._chunk_frames,
                callback=self._on_audio,
                device_id=self._device_id,
            )
        except CaptureError as error:
            with self._lock:
                self._encoder.discard()
                self._encoder = None
            self.session.last_error = error.message
            logger.error(f'Error starting recording: {error.detail or error.message}')
            return False

        self._stream = stream
        self.session.elapsed_seconds = 0
        self.session.input_level = 0.0
        self._session_id = _build_session_id()
        self._transition(RecorderEvent.START)
        self._clock.start(self._on_clock_tick)

        if self._studio_log is not None:
            self._studio_log.take_started(
                session_id=self._session_id,
                device_id=self._device_id,
                sample_rate=self._rate,
                channels=self._channels,
                mime_type=container.mime_type,
            )
        logger.info(f'Recording started. Session ID: {self._session_id}')
        return True

    def stop_recording(self) -> Optional[RawAudioBlob]:
        """Finalize the take.

        Returns:
            The recorded blob, or ``None`` if no recording was active or the
            take was lost to an encoder fault.
        """
        if self._encoder is None:
            return None
        if self._pending_fault is not None:
            self._fail()
            return None

        self._clock.stop()
        self._release_stream()

        with self._lock:
            encoder, self._encoder = self._encoder, None
        try:
            blob = encoder.finalize()
        except (RuntimeError, ValueError, OSError) as error:
            self._pending_fault = RecordingError(str(error))
            self._fail()
            return None

        self._transition(RecorderEvent.STOP)
        self.session.input_level = 0.0

        if self._studio_log is not None:
            self._studio_log.take_finished(
                session_id=self._session_id,
                seconds=encoder.frame_count / float(self._rate),
                chunk_count=encoder.chunk_count,
                size_bytes=blob.size,
            )
        logger.info(f'Recording stopped, blob size: {blob.size}')
        return blob

    def pause_recording(self) -> bool:
        """Suspend the encoder and the analysis tap together."""
        if not self.can(RecorderEvent.PAUSE):
            return False
        self._clock.stop()
        if self._stream is not None:
            self._stream.pause()
        return self._transition(RecorderEvent.PAUSE)

    def resume_recording(self) -> bool:
        """Resume the encoder and the analysis tap together."""
        if not self.can(RecorderEvent.RESUME):
            return False
        self._transition(RecorderEvent.RESUME)
        if self._stream is not None:
            self._stream.resume()
        self._clock.start(self._on_clock_tick)
        return True

    def reset_recording(self) -> None:
        """Return to idle from any state, discarding buffered audio."""
        self._clock.stop()
        self._release_stream()
        with self._lock:
            if self._encoder is not None:
                self._encoder.discard()
                self._encoder = None
            self._pending_fault = None
        self._transition(RecorderEvent.RESET)
        self.session.elapsed_seconds = 0
        self.session.input_level = 0.0
        self.session.last_error = None
        self.analyzer.reset()
        self.waveform.clear()

    def update_level(self) -> bool:
        """Sample the analysis tap; call once per display refresh.

        Returns:
            ``True`` while the caller should keep scheduling refreshes.
        """
        if self._pending_fault is not None:
            self._fail()
            return False
        if not (self.session.is_recording and not self.session.is_paused):
            return False
        level = self.analyzer.level()
        self.session.input_level = level
        self.waveform.push(level)
        return True

    def close(self) -> None:
        """Teardown hook: releases hardware if still held."""
        self.reset_recording()

    def __enter__(self) -> 'Recorder':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Callbacks and internal helpers
    # ------------------------------------------------------------------

    def _on_audio(self, samples: np.ndarray) -> None:
        """Capture callback: one fixed-interval chunk per call."""
        with self._lock:
            if self._encoder is None or self._state is RecorderState.PAUSED:
                return
            if self._pending_fault is not None:
                return
            try:
                self._encoder.write(samples)
            except (RuntimeError, ValueError, OSError) as error:
                # Cannot close the stream from its own callback thread
                logger.error(f'Encoder error: {error}')
                self._pending_fault = RecordingError(str(error) or 'Unknown error')
                return
        self.analyzer.push(samples)

    def _on_clock_tick(self) -> None:
        with self._lock:
            if self._state is RecorderState.RECORDING:
                self.session.elapsed_seconds += 1

    def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def _fail(self) -> None:
        """Handle an encoder fault: release everything, surface the error."""
        fault = self._pending_fault
        self._clock.stop()
        self._release_stream()
        with self._lock:
            if self._encoder is not None:
                self._encoder.discard()
                self._encoder = None
            self._pending_fault = None
        self._transition(RecorderEvent.FAULT)
        self.session.input_level = 0.0
        if fault is not None:
            self.session.last_error = fault.message
            logger.error(fault.message)
