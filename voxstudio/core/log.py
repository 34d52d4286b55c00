"""Studio history kept as JSON Lines beside the recordings.

Every line is one self-contained record with a ``type`` and a timestamp
``at``.  Two types are written:

``take``
    ``event`` is ``"start"`` (device, rate, channels, container MIME type)
    or ``"end"`` (captured duration, chunk count, blob size).  Both carry
    the take's ``session_id``.

``render``
    One per effects render: source name, effect order, output name and
    rendered duration.

Example::

    {"type": "take", "event": "start", "session_id": "261019143022", "device_id": null, "sample_rate": 48000, "channels": 1, "mime_type": "audio/ogg;codecs=opus", "at": "2026-10-19T14:30:22"}
    {"type": "take", "event": "end", "session_id": "261019143022", "total_duration_sec": 2.0, "chunk_count": 20, "size_bytes": 9120, "at": "2026-10-19T14:30:24"}
    {"type": "render", "source": "take.ogg", "effects": ["equalizer", "reverb"], "output": "take.fx.wav", "duration_sec": 2.0, "at": "2026-10-19T14:31:02"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger


def _timestamp() -> str:
    return datetime.now().replace(microsecond=0).isoformat()


class StudioLog:
    """Append-only JSONL history; writes are serialised by a lock."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record_type: str, **fields) -> dict:
        """Write one record and return it."""
        record = {'type': record_type, **fields, 'at': _timestamp()}
        line = json.dumps(record, ensure_ascii=False)
        with self._lock, self.path.open('a', encoding='utf-8') as fh:
            fh.write(line + '\n')
        return record

    def take_started(
        self,
        session_id: str,
        device_id: Optional[int],
        sample_rate: int,
        channels: int,
        mime_type: str,
    ) -> dict:
        return self.append(
            'take',
            event='start',
            session_id=session_id,
            device_id=device_id,
            sample_rate=sample_rate,
            channels=channels,
            mime_type=mime_type,
        )

    def take_finished(self, session_id: str, seconds: float, chunk_count: int, size_bytes: int) -> dict:
        """Close a take opened by :meth:`take_started`.

        Args:
            seconds: Captured audio, excluding paused time.
        """
        return self.append(
            'take',
            event='end',
            session_id=session_id,
            total_duration_sec=round(seconds, 3),
            chunk_count=chunk_count,
            size_bytes=size_bytes,
        )

    def render_finished(self, source: str, effects: Iterable[str], output: str, seconds: float) -> dict:
        return self.append(
            'render',
            source=source,
            effects=list(effects),
            output=output,
            duration_sec=round(seconds, 3),
        )

    def records(self, record_type: Optional[str] = None) -> List[dict]:
        """Read the history back, oldest first; unreadable lines are skipped."""
        if not self.path.exists():
            return []
        found = []
        with self._lock:
            lines = self.path.read_text(encoding='utf-8').splitlines()
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f'Skipping malformed line {number} in {self.path}')
                continue
            if record_type is None or record.get('type') == record_type:
                found.append(record)
        return found
