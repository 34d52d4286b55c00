"""Configuration management for VoxStudio.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.voxstudio.yml`` in the working directory).

Audio constants
---------------
- ``RATE``               – capture sample rate in Hz (default 48 000, an
  Opus-compatible rate)
- ``CHANNEL``            – number of input channels (default 1 / mono)
- ``CHUNK_MS``           – encoder flush interval in milliseconds (100)
- ``CLOCK_INTERVAL``     – recording clock period in seconds (1)
- ``ANALYSER_FFT_SIZE``  – samples per level analysis frame (256)

Duration resolution
-------------------
- ``METADATA_TIMEOUT``   – ceiling for the metadata strategy (5 s)
- ``NOMINAL_BITRATE``    – bitrate assumed by the size estimate (128 kbps)
- ``MAX_ESTIMATE``       – size estimates must land below this (3600 s)

Configuration file
------------------
All constants above can be overridden at runtime via ``.voxstudio.yml``
placed in the project root:

.. code-block:: yaml

    recording:
      rate: 48000
      output_dir: recordings/
      containers: [flac, wav]
    duration:
      metadata_timeout: 2.5
    tracks:
      max_per_project: 10
      file: tracks.json
    capture:
      allow_remote: false
    log:
      file: studio.jsonl
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Audio recording parameters
RATE = 48000
CHANNEL = 1
CHUNK_MS = 100
CLOCK_INTERVAL = 1.0
ANALYSER_FFT_SIZE = 256
OUTPUT_DIR = 'recordings/'

# Duration resolution
METADATA_TIMEOUT = 5.0
NOMINAL_BITRATE = 128000
MAX_ESTIMATE = 3600.0

# Tracks
MAX_TRACKS_PER_PROJECT = 10
TRACKS_FILE = 'tracks.json'
DEFAULT_TRACK_SAMPLE_RATE = 44100

# AI clip bounds (seconds); the upper bound tolerates encoder padding
MIN_CLIP_SECONDS = 0.5
MAX_CLIP_SECONDS = 10.1

CONFIG_FILE = '.voxstudio.yml'
LOG_FILE = 'studio.jsonl'

_SECTIONS = ('recording', 'duration', 'tracks', 'capture')


class AppConfig:
    """Application configuration management."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """Initialize configuration with defaults.

        Args:
            config_path: Explicit YAML file.  Defaults to ``.voxstudio.yml``
                in the current working directory.
        """
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'channel': CHANNEL,
            'chunk_ms': CHUNK_MS,
            'clock_interval': CLOCK_INTERVAL,
            'fft_size': ANALYSER_FFT_SIZE,
            'output_dir': OUTPUT_DIR,
            'containers': None,
            'metadata_timeout': METADATA_TIMEOUT,
            'nominal_bitrate': NOMINAL_BITRATE,
            'max_estimate': MAX_ESTIMATE,
            'max_per_project': MAX_TRACKS_PER_PROJECT,
            'tracks_file': TRACKS_FILE,
            'allow_remote': False,
        }
        self._config_path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILE
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration."""
        if not self._config_path.exists():
            return

        content = yaml.safe_load(self._config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {self._config_path.name} must be a mapping")

        for section in _SECTIONS:
            section_config = content.get(section)
            if not isinstance(section_config, dict):
                continue
            for key, value in section_config.items():
                # tracks.file is stored under a non-clashing key
                if section == 'tracks' and key == 'file':
                    key = 'tracks_file'
                self._config[key] = value

        for key, value in content.items():
            if key in _SECTIONS:
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Value for *key*; *default* when missing or explicitly ``None``."""
        value = self._config.get(key, default)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self._config[key] = value

    @property
    def chunk_frames(self) -> int:
        """Frames delivered per encoder chunk at the configured rate."""
        return max(1, int(int(self.get('rate')) * int(self.get('chunk_ms')) / 1000))

    def get_output_dir(self) -> Path:
        """The recordings directory, created on first use."""
        path = Path(self.get('output_dir', OUTPUT_DIR))
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _beside_recordings(self, name: str, output_dir: Optional[Path]) -> Path:
        return (Path(output_dir) if output_dir is not None else self.get_output_dir()) / name

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Studio log file inside *output_dir* (default: :meth:`get_output_dir`).

        The name comes from ``log.file`` in ``.voxstudio.yml``, else
        :data:`LOG_FILE`.
        """
        section = self._config.get('log')
        name = section.get('file', LOG_FILE) if isinstance(section, dict) else LOG_FILE
        return self._beside_recordings(str(name), output_dir)

    def get_tracks_path(self, output_dir: Optional[Path] = None) -> Path:
        """Local track repository file inside *output_dir*."""
        return self._beside_recordings(str(self.get('tracks_file', TRACKS_FILE)), output_dir)
