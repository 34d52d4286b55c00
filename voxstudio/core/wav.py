"""Uncompressed PCM container encoding and blob decoding.

:func:`encode_wav` writes rendered audio as a canonical 44-byte-header
RIFF/WAVE file with 16-bit little-endian samples.  The header is built
field by field::

    offset  size  field
    0       4     "RIFF"
    4       4     file size - 8
    8       4     "WAVE"
    12      4     "fmt "
    16      4     16 (fmt chunk size)
    20      2     1 (linear PCM)
    22      2     channels
    24      4     sample rate
    28      4     byte rate   = sample rate * channels * 2
    32      2     block align = channels * 2
    34      2     16 (bits per sample)
    36      4     "data"
    40      4     data size   = frames * block align

Samples are clamped to ``[-1, 1]`` before quantisation so that overs never
wrap around.
"""

import struct
from typing import Tuple

import numpy as np
import soundfile as sf

from .encoding import RawAudioBlob

WAV_HEADER_SIZE = 44
WAV_MIME = 'audio/wav'
BYTES_PER_SAMPLE = 2
PCM_MAX = 32767


def wav_header(sample_rate: int, channels: int, frames: int) -> bytes:
    """Build the 44-byte PCM16 header."""
    block_align = channels * BYTES_PER_SAMPLE
    byte_rate = sample_rate * block_align
    data_size = frames * block_align
    return struct.pack(
        '<4sI4s4sIHHIIHH4sI',
        b'RIFF',
        WAV_HEADER_SIZE + data_size - 8,
        b'WAVE',
        b'fmt ',
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BYTES_PER_SAMPLE * 8,
        b'data',
        data_size,
    )


def quantize(buffer: np.ndarray) -> np.ndarray:
    """Clamp float samples to [-1, 1] and round to int16."""
    clamped = np.clip(np.nan_to_num(buffer, nan=0.0), -1.0, 1.0)
    return np.round(clamped * PCM_MAX).astype('<i2')


def encode_wav(buffer: np.ndarray, sample_rate: int) -> RawAudioBlob:
    """Encode a ``(channels, frames)`` float buffer as PCM16 WAV.

    Args:
        buffer: Float samples, one row per channel.  A 1-D array is mono.
        sample_rate: Sample rate in Hz.

    Returns:
        An ``audio/wav`` blob whose size is ``44 + frames * channels * 2``.
    """
    samples = np.atleast_2d(np.asarray(buffer, dtype=np.float64))
    channels, frames = samples.shape
    # interleave: frame-major, channel-minor
    payload = quantize(samples.T).tobytes()
    return RawAudioBlob(data=wav_header(sample_rate, channels, frames) + payload, mime_type=WAV_MIME)


def decode_blob(blob: RawAudioBlob) -> Tuple[np.ndarray, int]:
    """Decode any libsndfile-readable blob.

    Returns:
        ``(buffer, sample_rate)`` where ``buffer`` is ``float32`` shaped
        ``(channels, frames)``.
    """
    data, sample_rate = sf.read(blob.open(), dtype='float32', always_2d=True)
    return np.ascontiguousarray(data.T), int(sample_rate)
