"""Duration resolution for encoded audio blobs.

Freshly recorded compressed blobs often carry missing or wrong duration
metadata, so duration is triangulated by an ordered chain of strategies.
Each strategy either returns a finite positive number of seconds or raises
:class:`~voxstudio.core.errors.DurationStrategyError`; the chain moves to the
next strategy on failure and raises
:class:`~voxstudio.core.errors.DurationResolutionError` only when all of
them are exhausted.

1. ``metadata`` – read container metadata (bounded by a timeout, 5 s default)
2. ``decode``   – fully decode and count frames
3. ``size``     – ``size_bytes * 8 / nominal_bitrate``, accepted in (0, 3600)
"""

import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import List, Optional, Sequence

import soundfile as sf
from loguru import logger

from .config import MAX_ESTIMATE, METADATA_TIMEOUT, NOMINAL_BITRATE, AppConfig
from .encoding import RawAudioBlob
from .errors import DurationResolutionError, DurationStrategyError
from .wav import decode_blob


# floor for the caller-side estimate of an empty or unreadable blob
MIN_ESTIMATE = 0.001


def _usable(seconds: float) -> bool:
    return math.isfinite(seconds) and seconds > 0


def estimate_duration_from_size(size_bytes: int, bitrate: int = NOMINAL_BITRATE) -> float:
    """Duration implied by *size_bytes* at a constant *bitrate*."""
    return (size_bytes * 8) / float(bitrate)


class DurationStrategy:
    """One step of the resolution chain."""

    name = "strategy"

    def __call__(self, blob: RawAudioBlob) -> float:
        raise NotImplementedError


class MetadataStrategy(DurationStrategy):
    """Read the duration the container declares, within a timeout."""

    name = "metadata"

    def __init__(self, timeout: float = METADATA_TIMEOUT) -> None:
        self.timeout = timeout

    @staticmethod
    def _read(blob: RawAudioBlob) -> float:
        info = sf.info(blob.open())
        if info.samplerate <= 0:
            return float('nan')
        return info.frames / float(info.samplerate)

    def __call__(self, blob: RawAudioBlob) -> float:
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._read, blob)
        try:
            seconds = future.result(timeout=self.timeout)
        except FutureTimeout:
            raise DurationStrategyError(self.name, f"timed out after {self.timeout:g}s")
        except (RuntimeError, ValueError, TypeError, OSError) as error:
            raise DurationStrategyError(self.name, str(error))
        finally:
            # a timed-out read is abandoned, not awaited
            executor.shutdown(wait=False)
        if not _usable(seconds):
            raise DurationStrategyError(self.name, f"invalid duration {seconds!r}")
        return seconds


class DecodeStrategy(DurationStrategy):
    """Decode the whole blob and divide frames by sample rate."""

    name = "decode"

    def __call__(self, blob: RawAudioBlob) -> float:
        try:
            buffer, sample_rate = decode_blob(blob)
        except (RuntimeError, ValueError, TypeError, OSError) as error:
            raise DurationStrategyError(self.name, str(error))
        seconds = buffer.shape[1] / float(sample_rate) if sample_rate > 0 else float('nan')
        if not _usable(seconds):
            raise DurationStrategyError(self.name, f"invalid duration {seconds!r}")
        return seconds


class SizeEstimateStrategy(DurationStrategy):
    """Estimate from byte size at a nominal bitrate."""

    name = "size"

    def __init__(self, bitrate: int = NOMINAL_BITRATE, max_seconds: float = MAX_ESTIMATE) -> None:
        self.bitrate = bitrate
        self.max_seconds = max_seconds

    def __call__(self, blob: RawAudioBlob) -> float:
        seconds = estimate_duration_from_size(blob.size, self.bitrate)
        if not (0 < seconds < self.max_seconds):
            raise DurationStrategyError(
                self.name, f"estimate {seconds:.3f}s outside (0, {self.max_seconds:g})"
            )
        return seconds


class DurationResolver:
    """Deterministic ordered chain of :class:`DurationStrategy` objects."""

    def __init__(self, strategies: Optional[Sequence[DurationStrategy]] = None) -> None:
        if strategies is None:
            strategies = (MetadataStrategy(), DecodeStrategy(), SizeEstimateStrategy())
        self.strategies = list(strategies)

    @classmethod
    def from_config(cls, config: AppConfig) -> 'DurationResolver':
        return cls((
            MetadataStrategy(float(config.get('metadata_timeout'))),
            DecodeStrategy(),
            SizeEstimateStrategy(int(config.get('nominal_bitrate')), float(config.get('max_estimate'))),
        ))

    def resolve(self, blob: RawAudioBlob) -> float:
        """Return the playable duration of *blob* in seconds.

        Raises:
            DurationResolutionError: If every strategy failed.
        """
        logger.debug(f'Analyzing audio duration for blob: {blob.size} bytes')
        failures: List[DurationStrategyError] = []
        for strategy in self.strategies:
            try:
                seconds = strategy(blob)
            except DurationStrategyError as failure:
                logger.debug(f'Duration strategy failed: {failure.message}')
                failures.append(failure)
                continue
            logger.debug(f'Duration resolved by {strategy.name}: {seconds:.3f}s')
            return seconds
        raise DurationResolutionError(failures)


def resolve_duration(blob: RawAudioBlob, resolver: Optional[DurationResolver] = None) -> float:
    """Resolve with the default (or given) strategy chain."""
    return (resolver or DurationResolver()).resolve(blob)


def resolve_duration_or_estimate(
    blob: RawAudioBlob,
    resolver: Optional[DurationResolver] = None,
    bitrate: int = NOMINAL_BITRATE,
) -> float:
    """Caller-side wrapper: never raises, falls back to the raw size estimate.

    The estimate is floored at :data:`MIN_ESTIMATE` so the result is always
    positive, even for an empty blob.
    """
    try:
        return resolve_duration(blob, resolver)
    except DurationResolutionError as error:
        estimate = max(estimate_duration_from_size(blob.size, bitrate), MIN_ESTIMATE)
        logger.warning(f'{error.message}; using size estimate {estimate:.3f}s')
        return estimate
