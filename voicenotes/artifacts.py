"""Audio artifact manager for voicenotes.

Recordings live in a single directory as ``recording_<epoch>.wav``. Notes only
store the filename; this module resolves it to a full path.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Iterator

AUDIO_SUFFIX = ".wav"


class ArtifactStore:
    """Manages recorded audio files on disk."""

    def __init__(self, directory: Path | str, clock: Callable[[], float] = time.time) -> None:
        """Initialize the artifact store.

        Args:
            directory: Directory holding the recordings. Created on demand.
            clock: Callable returning seconds since the epoch, used for naming.
        """
        self.directory = Path(directory)
        self._clock = clock

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def new_artifact_path(self) -> Path:
        """Return a fresh, time-stamped path that does not exist yet."""
        self.ensure_directory()
        stem = f"recording_{int(self._clock())}"
        candidate = self.directory / f"{stem}{AUDIO_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.directory / f"{stem}-{counter}{AUDIO_SUFFIX}"
            counter += 1
        return candidate

    def path_for(self, filename: str) -> Path:
        return self.directory / Path(filename).name

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def delete(self, filename: str) -> None:
        """Delete an artifact.

        Raises:
            FileNotFoundError: If the artifact does not exist.
            OSError: If the file could not be removed.
        """
        self.path_for(filename).unlink()

    def iter_artifacts(self) -> Iterator[Path]:
        if not self.directory.is_dir():
            return
        for path in sorted(self.directory.iterdir()):
            if path.is_file():
                yield path

    def total_bytes_used(self) -> int:
        total = 0
        for path in self.iter_artifacts():
            try:
                total += path.stat().st_size
            except OSError:
                continue
        return total
