"""Audio hardware backends for VoxStudio.

The recorder, capture gate and playback elements never talk to PortAudio
directly.  They go through a :class:`CaptureBackend`, which hands out
stream handles and reports failures as :class:`~voxstudio.core.errors.CaptureError`
with a normalised :class:`~voxstudio.core.errors.FailureKind`.  Tests swap in
a fake backend; production uses :class:`PyAudioBackend`.

Streams deliver and consume ``float32`` arrays shaped ``(frames, channels)``
in ``[-1, 1]``.  PortAudio runs them on its own callback thread.
"""

import errno
import os
import sys
from typing import Callable, List, Optional

import numpy as np
from loguru import logger

from .errors import CaptureError, FailureKind

CaptureCallback = Callable[[np.ndarray], None]
RenderCallback = Callable[[int], np.ndarray]

# PortAudio PaErrorCode values surfaced by PyAudio as OSError.errno
PA_NOT_INITIALIZED = -10000
PA_INVALID_CHANNEL_COUNT = -9998
PA_INVALID_SAMPLE_RATE = -9997
PA_INVALID_DEVICE = -9996
PA_SAMPLE_FORMAT_NOT_SUPPORTED = -9994
PA_DEVICE_UNAVAILABLE = -9985
PA_HOST_API_NOT_FOUND = -9979
PA_INVALID_HOST_API = -9978

_PA_FAILURES = {
    PA_INVALID_DEVICE: FailureKind.NO_DEVICE,
    PA_DEVICE_UNAVAILABLE: FailureKind.DEVICE_BUSY,
    PA_INVALID_CHANNEL_COUNT: FailureKind.UNSUPPORTED_CONSTRAINTS,
    PA_INVALID_SAMPLE_RATE: FailureKind.UNSUPPORTED_CONSTRAINTS,
    PA_SAMPLE_FORMAT_NOT_SUPPORTED: FailureKind.UNSUPPORTED_CONSTRAINTS,
    PA_NOT_INITIALIZED: FailureKind.NOT_SUPPORTED,
    PA_HOST_API_NOT_FOUND: FailureKind.NOT_SUPPORTED,
    PA_INVALID_HOST_API: FailureKind.NOT_SUPPORTED,
    errno.EACCES: FailureKind.ACCESS_DENIED,
    errno.EPERM: FailureKind.ACCESS_DENIED,
    errno.EBUSY: FailureKind.DEVICE_BUSY,
    errno.ENODEV: FailureKind.NO_DEVICE,
    errno.ENOENT: FailureKind.NO_DEVICE,
}


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'


def classify_capture_exception(error: BaseException) -> FailureKind:
    """Map a low-level audio exception onto a :class:`FailureKind`."""
    if isinstance(error, CaptureError):
        return error.kind
    if isinstance(error, KeyboardInterrupt):
        return FailureKind.CANCELLED
    if isinstance(error, PermissionError):
        return FailureKind.ACCESS_DENIED
    if isinstance(error, ImportError):
        return FailureKind.NOT_SUPPORTED
    if isinstance(error, OSError) and error.errno in _PA_FAILURES:
        return _PA_FAILURES[error.errno]
    text = str(error).lower()
    if 'busy' in text or 'unavailable' in text:
        return FailureKind.DEVICE_BUSY
    if 'permission' in text or 'denied' in text:
        return FailureKind.ACCESS_DENIED
    return FailureKind.UNKNOWN


def is_remote_session() -> bool:
    """Return ``True`` when running inside an SSH session."""
    return bool(os.environ.get('SSH_CONNECTION') or os.environ.get('SSH_TTY'))


class CaptureStream:
    """Handle to a live input stream.  Released exactly once by :meth:`close`."""

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class OutputStream:
    """Handle to a live output stream pulling frames from a render callback."""

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class CaptureBackend:
    """Interface every audio backend implements."""

    def is_secure_context(self) -> bool:
        """Whether capture is allowed in the current process context."""
        return True

    def query_permission(self) -> Optional[str]:
        """Answer the permission question without opening a stream.

        Returns one of ``'granted'``, ``'denied'``, ``'prompt'`` or ``None``
        when the backend cannot answer non-intrusively.
        """
        return None

    def probe(self, constraints: Optional[dict] = None) -> None:
        """Open and immediately close a capture stream.

        Raises:
            CaptureError: Classified failure of the probe.
        """
        raise NotImplementedError

    def open_capture(
        self,
        rate: int,
        channels: int,
        frames_per_buffer: int,
        callback: CaptureCallback,
        device_id: Optional[int] = None,
    ) -> CaptureStream:
        raise NotImplementedError

    def open_output(self, rate: int, channels: int, callback: RenderCallback) -> OutputStream:
        raise NotImplementedError

    def list_devices(self, driver_filter: Optional[str] = None) -> List[dict]:
        return []


def _pyaudio():
    """Import PyAudio lazily so that hardware-free code paths never need it."""
    try:
        import pyaudio
    except ImportError as error:
        raise CaptureError(FailureKind.NOT_SUPPORTED, str(error)) from error
    return pyaudio


class _PyAudioCaptureStream(CaptureStream):
    def __init__(self, interface, stream) -> None:
        self._interface = interface
        self._stream = stream
        self._closed = False

    def pause(self) -> None:
        if not self._closed and self._stream.is_active():
            self._stream.stop_stream()

    def resume(self) -> None:
        if not self._closed and not self._stream.is_active():
            self._stream.start_stream()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # stop_stream blocks until the last callback has returned
            self._stream.stop_stream()
            self._stream.close()
        finally:
            self._interface.terminate()
        logger.debug('Capture stream released')


class _PyAudioOutputStream(OutputStream):
    def __init__(self, interface, stream) -> None:
        self._interface = interface
        self._stream = stream
        self._closed = False

    def start(self) -> None:
        if not self._closed and not self._stream.is_active():
            self._stream.start_stream()

    def stop(self) -> None:
        if not self._closed and self._stream.is_active():
            self._stream.stop_stream()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.stop_stream()
            self._stream.close()
        finally:
            self._interface.terminate()


class PyAudioBackend(CaptureBackend):
    """PortAudio backend built on PyAudio."""

    def __init__(self, allow_remote: bool = False) -> None:
        self._allow_remote = allow_remote

    def is_secure_context(self) -> bool:
        return self._allow_remote or not is_remote_session()

    def query_permission(self) -> Optional[str]:
        # macOS gates the microphone behind a TCC prompt PortAudio cannot query
        if sys.platform == 'darwin':
            return None
        pyaudio = _pyaudio()
        audio = pyaudio.PyAudio()
        try:
            audio.get_default_input_device_info()
            return 'granted'
        except (OSError, IOError):
            return None
        finally:
            audio.terminate()

    def probe(self, constraints: Optional[dict] = None) -> None:
        constraints = constraints or {}
        pyaudio = _pyaudio()
        audio = pyaudio.PyAudio()
        try:
            device_id = constraints.get('device_id')
            if device_id is None:
                info = audio.get_default_input_device_info()
                device_id = int(info['index'])
            else:
                info = audio.get_device_info_by_index(device_id)
            rate = int(constraints.get('rate') or info.get('defaultSampleRate', 44100))
            stream = audio.open(
                format=pyaudio.paInt16,
                channels=int(constraints.get('channels', 1)),
                rate=rate,
                input=True,
                input_device_index=device_id,
                frames_per_buffer=1024,
                start=False,
            )
            stream.close()
        except (OSError, IOError) as error:
            raise CaptureError(classify_capture_exception(error), str(error)) from error
        finally:
            audio.terminate()

    def open_capture(
        self,
        rate: int,
        channels: int,
        frames_per_buffer: int,
        callback: CaptureCallback,
        device_id: Optional[int] = None,
    ) -> CaptureStream:
        pyaudio = _pyaudio()
        audio = pyaudio.PyAudio()

        def _fill_buffer(in_data, frame_count, time_info, status_flags):
            samples = np.frombuffer(in_data, dtype=np.int16).astype(np.float32) / 32768.0
            callback(samples.reshape(-1, channels))
            return None, pyaudio.paContinue

        try:
            stream = audio.open(
                format=pyaudio.paInt16,
                channels=channels,
                rate=rate,
                input=True,
                input_device_index=device_id,
                frames_per_buffer=frames_per_buffer,
                stream_callback=_fill_buffer,
            )
        except (OSError, IOError) as error:
            audio.terminate()
            raise CaptureError(classify_capture_exception(error), str(error)) from error
        logger.info(f'Capture stream opened ({rate} Hz, {channels} ch, device {device_id})')
        return _PyAudioCaptureStream(audio, stream)

    def open_output(self, rate: int, channels: int, callback: RenderCallback) -> OutputStream:
        pyaudio = _pyaudio()
        audio = pyaudio.PyAudio()

        def _drain_buffer(in_data, frame_count, time_info, status_flags):
            block = np.clip(callback(frame_count), -1.0, 1.0)
            return (block * 32767.0).astype('<i2').tobytes(), pyaudio.paContinue

        try:
            stream = audio.open(
                format=pyaudio.paInt16,
                channels=channels,
                rate=rate,
                output=True,
                stream_callback=_drain_buffer,
                start=False,
            )
        except (OSError, IOError) as error:
            audio.terminate()
            raise CaptureError(classify_capture_exception(error), str(error)) from error
        return _PyAudioOutputStream(audio, stream)

    def list_devices(self, driver_filter: Optional[str] = None) -> List[dict]:
        """List all available input audio devices.

        Args:
            driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

        Returns:
            List of dicts with keys: id, name, driver, channels, rate, is_default
        """
        pyaudio = _pyaudio()
        audio = pyaudio.PyAudio()
        try:
            try:
                default_device_id = int(audio.get_default_input_device_info()['index'])
            except (OSError, IOError):
                default_device_id = -1

            input_devices = []
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) <= 0:
                    continue
                device_name = device_info.get('name', 'Unknown')
                driver_type = detect_driver_type(device_name)

                if driver_filter and driver_type != driver_filter.lower():
                    continue

                input_devices.append({
                    'id': i,
                    'name': device_name,
                    'driver': driver_type,
                    'channels': int(device_info.get('maxInputChannels', 0)),
                    'rate': int(device_info.get('defaultSampleRate', 0)),
                    'is_default': i == default_device_id,
                })
            return input_devices
        finally:
            audio.terminate()
