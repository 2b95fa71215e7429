"""Playback of saved recordings."""

from __future__ import annotations

from pathlib import Path


class AudioPlayer:
    """Play audio files on the default output device."""

    def __init__(self) -> None:
        try:
            import sounddevice as sd  # type: ignore
            import soundfile as sf  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `sounddevice` and `soundfile` packages are required for playback. "
                "Install voicenotes[audio]."
            ) from exc
        self._sd = sd
        self._sf = sf

    def duration(self, path: Path) -> float:
        _require(path)
        info = self._sf.info(str(path))
        return info.frames / info.samplerate if info.samplerate else 0.0

    def play(self, path: Path, start: float = 0.0) -> None:
        """Play ``path`` from ``start`` seconds until it ends.

        Ctrl-C stops the output stream before the interrupt propagates.
        """
        _require(path)
        data, samplerate = self._sf.read(str(path), dtype="float32")
        offset = int(start * samplerate)
        if start < 0 or offset >= len(data):
            raise ValueError(f"Start position {start:.1f}s is outside the recording.")
        self._sd.play(data[offset:], samplerate)
        try:
            self._sd.wait()
        except KeyboardInterrupt:
            self.stop()
            raise

    def stop(self) -> None:
        self._sd.stop()


def _require(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")
