"""Offline effects rendering for VoxStudio.

A render decodes the source blob into a ``(channels, frames)`` float buffer,
runs it through one stage per active effect *in activation order*, and
encodes the result as PCM16 WAV.  The output has exactly as many frames as
the source; tails from reverb and delay are cut at the end of the clip.

Stage topology
--------------
equalizer
    low-shelf (320 Hz) -> peaking (1 kHz, Q 1) -> high-shelf (3.2 kHz),
    RBJ cookbook biquads cascaded as second-order sections.
compressor
    feed-forward, channel-linked peak compressor with a 30 dB soft knee and
    separate attack/release smoothing of the gain reduction.
reverb
    convolution with a synthetic impulse response: white noise per channel
    shaped by ``(1 - t/len) ** (damping * 10)``, ``roomSize * 4`` seconds
    long.  The response is drawn fresh on every render.
delay
    single-tap delay line with feedback, ``d[n] = x[n-D] + fb * d[n-D]``.
chorus
    20 ms delay modulated by a sine LFO of ``depth * 10`` ms at ``rate`` Hz.

Wet/dry effects sum ``dry * x + wet * processed``.

Rendering is a pure function of its inputs and touches no shared state, so
concurrent renders are independent.  Only the reverb stage is random.
"""

import math
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
from loguru import logger
from scipy.signal import fftconvolve, sosfilt

from .encoding import RawAudioBlob
from .errors import RenderError
from .wav import decode_blob, encode_wav

EQ_LOW_FREQ = 320.0
EQ_MID_FREQ = 1000.0
EQ_MID_Q = 1.0
EQ_HIGH_FREQ = 3200.0

COMPRESSOR_KNEE_DB = 30.0

DELAY_MAX_SECONDS = 1.0
CHORUS_BASE_DELAY = 0.02
CHORUS_MAX_DELAY = 0.05
CHORUS_DEPTH_SCALE = 0.01


class EffectKind(str, Enum):
    EQUALIZER = "equalizer"
    COMPRESSOR = "compressor"
    REVERB = "reverb"
    DELAY = "delay"
    CHORUS = "chorus"

    @classmethod
    def parse(cls, value: str) -> 'EffectKind':
        """Accept canonical names and the short aliases used on the CLI."""
        key = str(value).strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise RenderError(f"unsupported effect '{value}'") from None


_ALIASES = {'eq': 'equalizer', 'comp': 'compressor', 'verb': 'reverb', 'echo': 'delay'}


def _clamp(name: str, value: float, low: float, high: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise RenderError(f"parameter {name} must be a finite number, got {value!r}")
    return min(max(value, low), high)


@dataclass
class ReverbParams:
    room_size: float = 0.3
    damping: float = 0.5
    wet_level: float = 0.3
    dry_level: float = 0.7

    _ranges = {
        'room_size': (0.1, 1.0),
        'damping': (0.0, 1.0),
        'wet_level': (0.0, 1.0),
        'dry_level': (0.0, 1.0),
    }


@dataclass
class DelayParams:
    delay_time: float = 0.3
    feedback: float = 0.25
    wet_level: float = 0.3
    dry_level: float = 0.7

    _ranges = {
        'delay_time': (0.05, DELAY_MAX_SECONDS),
        'feedback': (0.0, 0.8),
        'wet_level': (0.0, 1.0),
        'dry_level': (0.0, 1.0),
    }


@dataclass
class ChorusParams:
    rate: float = 1.5
    depth: float = 0.3
    wet_level: float = 0.4
    dry_level: float = 0.6

    _ranges = {
        'rate': (0.1, 5.0),
        'depth': (0.0, 1.0),
        'wet_level': (0.0, 1.0),
        'dry_level': (0.0, 1.0),
    }


@dataclass
class EqualizerParams:
    low_gain: float = 0.0
    mid_gain: float = 0.0
    high_gain: float = 0.0

    _ranges = {
        'low_gain': (-12.0, 12.0),
        'mid_gain': (-12.0, 12.0),
        'high_gain': (-12.0, 12.0),
    }


@dataclass
class CompressorParams:
    threshold: float = -24.0
    ratio: float = 3.0
    attack: float = 0.003
    release: float = 0.25

    _ranges = {
        'threshold': (-60.0, 0.0),
        'ratio': (1.0, 20.0),
        'attack': (0.0, 1.0),
        'release': (0.0, 1.0),
    }


def _clamp_group(group):
    updates = {
        f.name: _clamp(f"{type(group).__name__}.{f.name}", getattr(group, f.name), *group._ranges[f.name])
        for f in fields(group)
    }
    return replace(group, **updates)


def _snake(key: str) -> str:
    return ''.join('_' + c.lower() if c.isupper() else c for c in key)


@dataclass
class EffectParameters:
    """Fixed-shape configuration, one group per effect kind."""

    reverb: ReverbParams = field(default_factory=ReverbParams)
    delay: DelayParams = field(default_factory=DelayParams)
    chorus: ChorusParams = field(default_factory=ChorusParams)
    equalizer: EqualizerParams = field(default_factory=EqualizerParams)
    compressor: CompressorParams = field(default_factory=CompressorParams)

    def clamped(self) -> 'EffectParameters':
        """Copy with every value clamped to its documented range.

        Raises:
            RenderError: If a value is not a finite number.
        """
        return EffectParameters(
            reverb=_clamp_group(self.reverb),
            delay=_clamp_group(self.delay),
            chorus=_clamp_group(self.chorus),
            equalizer=_clamp_group(self.equalizer),
            compressor=_clamp_group(self.compressor),
        )

    def update(self, effect: str, name: str, value: float) -> None:
        """Set one parameter, e.g. ``update('reverb', 'roomSize', 0.5)``."""
        group = getattr(self, EffectKind.parse(effect).value)
        attr = _snake(name)
        if attr not in group._ranges:
            raise RenderError(f"unknown parameter '{name}' for {effect}")
        try:
            setattr(group, attr, float(value))
        except (TypeError, ValueError):
            raise RenderError(f"parameter '{name}' for {effect} must be a number, got {value!r}")

    def reset(self) -> None:
        """Restore every group to its defaults."""
        defaults = EffectParameters()
        for kind in EffectKind:
            setattr(self, kind.value, getattr(defaults, kind.value))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'EffectParameters':
        """Build from a mapping with snake_case or camelCase keys."""
        params = cls()
        for effect, values in (data or {}).items():
            if not isinstance(values, dict):
                raise RenderError(f"parameters for {effect} must be a mapping")
            for name, value in values.items():
                params.update(effect, name, value)
        return params

    def to_dict(self) -> dict:
        return {kind.value: asdict(getattr(self, kind.value)) for kind in EffectKind}


# ---------------------------------------------------------------------------
# Stages: (buffer[channels, frames], sample_rate, params, rng) -> buffer
# ---------------------------------------------------------------------------

def _shelf_alpha(w0: float) -> float:
    # shelf slope S = 1
    return math.sin(w0) / 2.0 * math.sqrt(2.0)


def _biquad(kind: str, f0: float, gain_db: float, q: float, sample_rate: int) -> np.ndarray:
    """RBJ cookbook coefficients as one normalised SOS row."""
    A = 10.0 ** (gain_db / 40.0)
    w0 = 2.0 * math.pi * f0 / float(sample_rate)
    cos_w0 = math.cos(w0)

    if kind == 'peaking':
        alpha = math.sin(w0) / (2.0 * q)
        b = (1.0 + alpha * A, -2.0 * cos_w0, 1.0 - alpha * A)
        a = (1.0 + alpha / A, -2.0 * cos_w0, 1.0 - alpha / A)
    elif kind == 'lowshelf':
        alpha = _shelf_alpha(w0)
        sq = 2.0 * math.sqrt(A) * alpha
        b = (
            A * ((A + 1) - (A - 1) * cos_w0 + sq),
            2 * A * ((A - 1) - (A + 1) * cos_w0),
            A * ((A + 1) - (A - 1) * cos_w0 - sq),
        )
        a = (
            (A + 1) + (A - 1) * cos_w0 + sq,
            -2 * ((A - 1) + (A + 1) * cos_w0),
            (A + 1) + (A - 1) * cos_w0 - sq,
        )
    elif kind == 'highshelf':
        alpha = _shelf_alpha(w0)
        sq = 2.0 * math.sqrt(A) * alpha
        b = (
            A * ((A + 1) + (A - 1) * cos_w0 + sq),
            -2 * A * ((A - 1) + (A + 1) * cos_w0),
            A * ((A + 1) + (A - 1) * cos_w0 - sq),
        )
        a = (
            (A + 1) - (A - 1) * cos_w0 + sq,
            2 * ((A - 1) - (A + 1) * cos_w0),
            (A + 1) - (A - 1) * cos_w0 - sq,
        )
    else:
        raise ValueError(f"unknown biquad type {kind}")

    a0 = a[0]
    return np.array([b[0] / a0, b[1] / a0, b[2] / a0, 1.0, a[1] / a0, a[2] / a0])


def _equalizer(buffer, sample_rate, params: EffectParameters, rng):
    eq = params.equalizer
    nyquist = sample_rate / 2.0
    sections = [
        _biquad(kind, f0, gain, EQ_MID_Q, sample_rate)
        for kind, f0, gain in (
            ('lowshelf', EQ_LOW_FREQ, eq.low_gain),
            ('peaking', EQ_MID_FREQ, eq.mid_gain),
            ('highshelf', EQ_HIGH_FREQ, eq.high_gain),
        )
        if f0 < nyquist
    ]
    if not sections:
        return buffer
    return sosfilt(np.vstack(sections), buffer, axis=-1)


def _gain_computer(level_db: np.ndarray, threshold: float, ratio: float, knee: float) -> np.ndarray:
    """Static curve: gain reduction in dB (<= 0) for each input level."""
    over = level_db - threshold
    reduction = np.zeros_like(level_db)
    slope = 1.0 / ratio - 1.0
    above = over > knee / 2.0
    in_knee = np.abs(over) <= knee / 2.0
    reduction[above] = slope * over[above]
    if knee > 0:
        reduction[in_knee] = slope * (over[in_knee] + knee / 2.0) ** 2 / (2.0 * knee)
    return reduction


def _compressor(buffer, sample_rate, params: EffectParameters, rng):
    comp = params.compressor
    if comp.ratio <= 1.0:
        return buffer
    peak = np.max(np.abs(buffer), axis=0)
    with np.errstate(divide='ignore'):
        level_db = 20.0 * np.log10(np.maximum(peak, 1e-12))
    target = _gain_computer(level_db, comp.threshold, comp.ratio, COMPRESSOR_KNEE_DB)

    attack_coeff = math.exp(-1.0 / (sample_rate * comp.attack)) if comp.attack > 0 else 0.0
    release_coeff = math.exp(-1.0 / (sample_rate * comp.release)) if comp.release > 0 else 0.0

    smoothed = np.empty_like(target)
    gain_db = 0.0
    for i, value in enumerate(target):
        # attack when more reduction is needed, release when less
        coeff = attack_coeff if value < gain_db else release_coeff
        gain_db = coeff * gain_db + (1.0 - coeff) * value
        smoothed[i] = gain_db

    return buffer * (10.0 ** (smoothed / 20.0))


def reverb_impulse(
    sample_rate: int,
    channels: int,
    room_size: float,
    damping: float,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Synthetic impulse response shaped ``(channels, room_size * 4 s)``."""
    rng = rng if rng is not None else np.random.default_rng()
    length = max(1, int(sample_rate * room_size * 4))
    decay = (1.0 - np.arange(length) / length) ** (damping * 10.0)
    noise = rng.uniform(-1.0, 1.0, size=(channels, length))
    return noise * decay


def _reverb(buffer, sample_rate, params: EffectParameters, rng):
    rv = params.reverb
    channels, frames = buffer.shape
    impulse = reverb_impulse(sample_rate, channels, rv.room_size, rv.damping, rng)
    # unit-energy response keeps the wet level comparable across room sizes
    energy = np.sqrt(np.sum(impulse ** 2, axis=1, keepdims=True))
    impulse = impulse / np.maximum(energy, 1e-12)
    wet = fftconvolve(buffer, impulse, mode='full', axes=-1)[:, :frames]
    return rv.dry_level * buffer + rv.wet_level * wet


def _delay(buffer, sample_rate, params: EffectParameters, rng):
    dl = params.delay
    taps = max(1, int(round(dl.delay_time * sample_rate)))
    frames = buffer.shape[1]
    delayed = np.zeros_like(buffer)
    # block recursion: each block of `taps` frames depends only on the previous one
    for start in range(taps, frames, taps):
        stop = min(start + taps, frames)
        span = stop - start
        delayed[:, start:stop] = (
            buffer[:, start - taps:start - taps + span]
            + dl.feedback * delayed[:, start - taps:start - taps + span]
        )
    return dl.dry_level * buffer + dl.wet_level * delayed


def _chorus(buffer, sample_rate, params: EffectParameters, rng):
    ch = params.chorus
    frames = buffer.shape[1]
    t = np.arange(frames) / float(sample_rate)
    delay = CHORUS_BASE_DELAY + ch.depth * CHORUS_DEPTH_SCALE * np.sin(2.0 * math.pi * ch.rate * t)
    delay = np.clip(delay, 0.0, CHORUS_MAX_DELAY)
    read_pos = np.arange(frames) - delay * sample_rate
    index = np.arange(frames)
    wet = np.vstack([np.interp(read_pos, index, row, left=0.0, right=0.0) for row in buffer])
    return ch.dry_level * buffer + ch.wet_level * wet


Stage = Callable[[np.ndarray, int, EffectParameters, Optional[np.random.Generator]], np.ndarray]

STAGES: Dict[EffectKind, Stage] = {
    EffectKind.EQUALIZER: _equalizer,
    EffectKind.COMPRESSOR: _compressor,
    EffectKind.REVERB: _reverb,
    EffectKind.DELAY: _delay,
    EffectKind.CHORUS: _chorus,
}


def normalize_effects(active_effects: Iterable) -> List[EffectKind]:
    """Parse effect names keeping first-activation order, dropping repeats."""
    ordered: List[EffectKind] = []
    for effect in active_effects:
        kind = effect if isinstance(effect, EffectKind) else EffectKind.parse(effect)
        if kind not in ordered:
            ordered.append(kind)
    return ordered


def render_buffer(
    buffer: np.ndarray,
    sample_rate: int,
    active_effects: Iterable,
    parameters: Optional[EffectParameters] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Run *buffer* through the effect chain and return a new buffer.

    Raises:
        RenderError: On unsupported effects, invalid parameters or
            non-finite output.
    """
    chain = normalize_effects(active_effects)
    params = (parameters or EffectParameters()).clamped()
    signal = np.atleast_2d(np.asarray(buffer, dtype=np.float64)).copy()
    if sample_rate <= 0:
        raise RenderError(f"invalid sample rate {sample_rate}")
    if signal.shape[1] == 0:
        raise RenderError("source audio is empty")

    try:
        for kind in chain:
            signal = STAGES[kind](signal, sample_rate, params, rng)
    except (ValueError, FloatingPointError, MemoryError) as error:
        raise RenderError(str(error)) from error

    if not np.all(np.isfinite(signal)):
        raise RenderError("rendered audio contains invalid samples")
    return signal


class EffectsProcessor:
    """Decode -> chain -> PCM16 WAV."""

    def render(
        self,
        source: RawAudioBlob,
        active_effects: Iterable,
        parameters: Optional[EffectParameters] = None,
    ) -> RawAudioBlob:
        """Render *source* through *active_effects* in the given order."""
        chain = normalize_effects(active_effects)
        try:
            buffer, sample_rate = decode_blob(source)
        except (RuntimeError, ValueError, TypeError, OSError) as error:
            logger.error(f'Error decoding source audio: {error}')
            raise RenderError(f"could not decode source audio ({error})") from error

        logger.info(
            f'Rendering {buffer.shape[1]} frames x {buffer.shape[0]} ch at {sample_rate} Hz '
            f'through [{", ".join(k.value for k in chain) or "no effects"}]'
        )
        rendered = render_buffer(buffer, sample_rate, chain, parameters)
        return encode_wav(rendered, sample_rate)


def render(
    source: RawAudioBlob,
    active_effects: Iterable,
    parameters: Optional[EffectParameters] = None,
) -> RawAudioBlob:
    """Module-level convenience wrapper around :class:`EffectsProcessor`."""
    return EffectsProcessor().render(source, active_effects, parameters)


def effect_names(active_effects: Iterable) -> Tuple[str, ...]:
    return tuple(kind.value for kind in normalize_effects(active_effects))
