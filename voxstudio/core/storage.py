"""Audio file storage for VoxStudio.

Blobs are written to and read back from a storage directory; the MIME type
is carried in the file extension.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .encoding import RawAudioBlob, extension_for

AUDIO_EXTENSIONS = {
    '.ogg': 'audio/ogg',
    '.flac': 'audio/flac',
    '.wav': 'audio/wav',
}


def mime_for(path: Path) -> str:
    """MIME type implied by the file extension."""
    return AUDIO_EXTENSIONS.get(Path(path).suffix.lower(), 'application/octet-stream')


def load_blob(path: Path) -> RawAudioBlob:
    """Read an audio file into a :class:`RawAudioBlob`."""
    path = Path(path)
    return RawAudioBlob(data=path.read_bytes(), mime_type=mime_for(path))


class StorageManager:
    """Manages audio file storage and metadata."""

    def __init__(self, storage_dir: str = "recordings/") -> None:
        """Initialize storage manager.

        Args:
            storage_dir: Root directory for audio storage
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def save_blob(self, blob: RawAudioBlob, name: str) -> Path:
        """Write *blob* as ``<name>.<ext>`` and return the path."""
        file_path = self.storage_dir / f"{name}.{extension_for(blob.mime_type)}"
        file_path.write_bytes(blob.data)
        logger.info(f"Saved {blob.size} bytes to {file_path}")
        return file_path

    def _describe(self, file_path: Path) -> Dict[str, Any]:
        stat = file_path.stat()
        return {
            "name": file_path.stem,
            "path": str(file_path),
            "mime_type": mime_for(file_path),
            "size": stat.st_size,
            "created": stat.st_ctime,
        }

    def list_recordings(self) -> List[Dict[str, Any]]:
        """List all stored recordings, oldest first.

        Returns:
            List of recording metadata dictionaries
        """
        files = [
            p for p in self.storage_dir.iterdir()
            if p.is_file() and p.suffix.lower() in AUDIO_EXTENSIONS
        ]
        recordings = [self._describe(p) for p in files]
        return sorted(recordings, key=lambda r: (r["created"], r["name"]))

    def get_recording_metadata(self, filename: str) -> Optional[Dict[str, Any]]:
        """Get metadata for a specific recording, or ``None`` if absent."""
        file_path = self.storage_dir / filename
        if not file_path.is_file():
            return None
        return self._describe(file_path)

    def delete_recording(self, filename: str) -> bool:
        """Delete a recording file.

        Returns:
            True if a file was removed, False if it did not exist
        """
        file_path = self.storage_dir / filename
        if not file_path.is_file():
            return False
        file_path.unlink()
        logger.info(f"Deleted recording: {filename}")
        return True
