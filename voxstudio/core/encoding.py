"""Recording containers and the chunked encoder sink.

The recorder commits to a single container per session, chosen as the first
entry of :data:`CONTAINER_PREFERENCES` that libsndfile can write at the
session's sample rate.  Audio is pushed to the encoder in fixed 100 ms chunks
and written straight into an in-memory container, so an aborted session loses
at most the chunk in flight.
"""

import io
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np
import soundfile as sf
from loguru import logger


@dataclass(frozen=True)
class RawAudioBlob:
    """Immutable encoded audio bytes plus a MIME hint."""

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> io.BytesIO:
        """Return a fresh readable stream over the blob."""
        return io.BytesIO(self.data)


@dataclass(frozen=True)
class Container:
    """A writable container/codec pair."""

    name: str
    mime_type: str
    format: str
    subtype: str
    extension: str
    rates: Optional[tuple] = None

    def supports_rate(self, rate: int) -> bool:
        return self.rates is None or rate in self.rates


OPUS_RATES = (8000, 12000, 16000, 24000, 48000)

# Highest compression first, uncompressed last
CONTAINER_PREFERENCES = (
    Container('opus', 'audio/ogg;codecs=opus', 'OGG', 'OPUS', 'ogg', OPUS_RATES),
    Container('vorbis', 'audio/ogg;codecs=vorbis', 'OGG', 'VORBIS', 'ogg'),
    Container('flac', 'audio/flac', 'FLAC', 'PCM_16', 'flac'),
    Container('wav', 'audio/wav', 'WAV', 'PCM_16', 'wav'),
)

_EXTENSIONS = {
    'audio/wav': 'wav',
    'audio/x-wav': 'wav',
    'audio/flac': 'flac',
    'audio/ogg': 'ogg',
}


def extension_for(mime_type: str) -> str:
    """File extension for a blob MIME type (``'bin'`` when unknown)."""
    return _EXTENSIONS.get(mime_type.split(';')[0].strip().lower(), 'bin')


def container_supported(container: Container, rate: int) -> bool:
    """Whether libsndfile can write *container* at *rate*."""
    if not container.supports_rate(rate):
        return False
    try:
        return sf.check_format(container.format, container.subtype)
    except (TypeError, ValueError):
        return False


def supported_containers(rate: int, names: Optional[Iterable[str]] = None) -> List[Container]:
    """Containers writable at *rate*, in preference order.

    Args:
        rate: Capture sample rate in Hz.
        names: Optional allow-list of container names (``'opus'``, ``'flac'``...).
    """
    allowed = {n.lower() for n in names} if names else None
    return [
        c for c in CONTAINER_PREFERENCES
        if (allowed is None or c.name in allowed) and container_supported(c, rate)
    ]


def select_container(rate: int, names: Optional[Iterable[str]] = None) -> Container:
    """Return the first supported container, falling back to WAV."""
    candidates = supported_containers(rate, names)
    if candidates:
        return candidates[0]
    logger.warning(f'No preferred container writable at {rate} Hz, using WAV')
    return CONTAINER_PREFERENCES[-1]


class ChunkEncoder:
    """Encoder sink accumulating fixed-interval chunks into one container.

    Thread-safe: :meth:`write` is called from the capture callback thread
    while :meth:`finalize` runs on the caller's thread.
    """

    def __init__(self, container: Container, rate: int, channels: int) -> None:
        self.container = container
        self.rate = rate
        self.channels = channels
        self.chunk_count = 0
        self.frame_count = 0
        self._buffer = io.BytesIO()
        self._lock = threading.Lock()
        self._file = sf.SoundFile(
            self._buffer,
            mode='w',
            samplerate=rate,
            channels=channels,
            format=container.format,
            subtype=container.subtype,
        )
        self._finalized = False

    def write(self, chunk: np.ndarray) -> None:
        """Encode one chunk; this is the ``dataavailable`` point."""
        with self._lock:
            if self._finalized:
                return
            self._file.write(np.asarray(chunk, dtype=np.float32))
            self.chunk_count += 1
            self.frame_count += len(chunk)

    def finalize(self) -> RawAudioBlob:
        """Close the container and return the assembled blob."""
        with self._lock:
            if not self._finalized:
                self._finalized = True
                self._file.close()
            data = self._buffer.getvalue()
        logger.debug(
            f'Encoder finalized: {self.chunk_count} chunks, {self.frame_count} frames, '
            f'{len(data)} bytes ({self.container.mime_type})'
        )
        return RawAudioBlob(data=data, mime_type=self.container.mime_type)

    def discard(self) -> None:
        """Drop all buffered audio without producing a blob."""
        with self._lock:
            if not self._finalized:
                self._finalized = True
                try:
                    self._file.close()
                except RuntimeError as error:
                    logger.debug(f'Ignoring encoder close failure on discard: {error}')
            self._buffer = io.BytesIO()
