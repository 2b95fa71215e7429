"""Microphone capture with duration bookkeeping and level metering."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable, Optional, Protocol

import numpy as np

from .artifacts import ArtifactStore
from .capabilities import Capability, CapabilityGate
from .clock import Clock, TickHandle
from .errors import DeviceUnavailable, PermissionDenied
from .events import Observable, ObservableField, Signal

MIN_LEVEL_DB = -60.0
MAX_LEVEL_DB = 0.0
SILENCE_DB = -160.0


class AudioRecorder(Protocol):
    """Device handle writing one recording to disk."""

    def start(self, path: Path) -> None:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def average_power(self) -> float:
        """Average power of the latest audio block in dBFS."""


def normalize_level(power_db: float) -> float:
    """Map a power reading onto 0.0-1.0, clamping to the -60..0 dB window."""

    if math.isnan(power_db):
        return 0.0
    clamped = max(MIN_LEVEL_DB, min(MAX_LEVEL_DB, power_db))
    return (clamped - MIN_LEVEL_DB) / (MAX_LEVEL_DB - MIN_LEVEL_DB)


def block_power_db(block: np.ndarray) -> float:
    if block.size == 0:
        return SILENCE_DB
    rms = float(np.sqrt(np.mean(np.square(block, dtype=np.float64))))
    if rms <= 0.0:
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * math.log10(rms))


class SoundDeviceRecorder:
    """Stream audio from the default microphone into a WAV file."""

    def __init__(self, samplerate: int = 44100, channels: int = 1) -> None:
        try:
            import sounddevice as sd  # type: ignore
            import soundfile as sf  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise DeviceUnavailable(
                "The `sounddevice` and `soundfile` packages are required for recording. "
                "Install voicenotes[audio]."
            ) from exc

        self._sd = sd
        self._sf = sf
        self._samplerate = samplerate
        self._channels = channels
        self._stream = None
        self._file = None
        self._power = SILENCE_DB

    def start(self, path: Path) -> None:
        if self._stream is not None:
            return
        self._file = self._sf.SoundFile(
            str(path), mode="w", samplerate=self._samplerate, channels=self._channels
        )
        try:
            self._stream = self._sd.InputStream(
                samplerate=self._samplerate,
                channels=self._channels,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception:
            self._close_file()
            self._stream = None
            raise

    def pause(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()
        self._power = SILENCE_DB

    def resume(self) -> None:
        if self._stream is not None and not self._stream.active:
            self._stream.start()

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self._close_file()
        self._power = SILENCE_DB

    def average_power(self) -> float:
        return self._power

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _callback(self, indata, frames, time, status) -> None:  # type: ignore[override]
        if status:
            logging.debug("Recorder status: %s", status)
        if self._file is not None:
            self._file.write(indata.copy())
        self._power = block_power_db(indata)


class AudioCaptureSession(Observable):
    """Own one recording's lifecycle and expose live duration and level.

    Duration is accumulated in whole milliseconds, one duration tick at a time,
    and is clamped to ``max_duration``. When the ceiling is reached the
    session stops itself and emits ``max_duration_reached`` with the final
    duration; ``duration_warning`` fires once per session when the duration
    first reaches ``warning_threshold``.
    """

    is_recording: bool = ObservableField(False)
    is_paused: bool = ObservableField(False)
    duration: float = ObservableField(0.0)
    audio_level: float = ObservableField(0.0)

    def __init__(
        self,
        recorder_factory: Callable[[], AudioRecorder],
        artifacts: ArtifactStore,
        capabilities: CapabilityGate,
        clock: Clock,
        max_duration: float = 120.0,
        warning_threshold: float = 90.0,
        duration_interval: float = 0.1,
        level_interval: float = 0.05,
    ) -> None:
        self._recorder_factory = recorder_factory
        self._artifacts = artifacts
        self._capabilities = capabilities
        self._clock = clock
        self._max_ms = round(max_duration * 1000)
        self._warning_ms = round(warning_threshold * 1000)
        self._tick_ms = round(duration_interval * 1000)
        self._duration_interval = duration_interval
        self._level_interval = level_interval
        self._recorder: Optional[AudioRecorder] = None
        self._path: Optional[Path] = None
        self._elapsed_ms = 0
        self._warned = False
        self._duration_ticker: Optional[TickHandle] = None
        self._level_ticker: Optional[TickHandle] = None

        self.max_duration_reached = Signal()
        self.duration_warning = Signal()

    @property
    def artifact_path(self) -> Optional[Path]:
        return self._path

    @property
    def is_active(self) -> bool:
        return self._recorder is not None

    async def start(self) -> Path:
        if self._recorder is not None:
            raise RuntimeError("A recording is already in progress.")

        if not await self._capabilities.request_capability(Capability.MICROPHONE):
            raise PermissionDenied(
                Capability.MICROPHONE.value, "Microphone permission is required to record audio."
            )

        path = self._artifacts.new_artifact_path()
        try:
            recorder = self._recorder_factory()
            recorder.start(path)
        except DeviceUnavailable:
            path.unlink(missing_ok=True)
            raise
        except Exception as exc:
            path.unlink(missing_ok=True)
            raise DeviceUnavailable(f"Failed to start recording: {exc}") from exc

        self._recorder = recorder
        self._path = path
        self._elapsed_ms = 0
        self._warned = False
        self.duration = 0.0
        self.audio_level = 0.0
        self.is_paused = False
        self.is_recording = True
        self._start_tickers()
        logging.info("Recording started: %s", path.name)
        return path

    def pause(self) -> None:
        if self._recorder is None or self.is_paused:
            return
        self._recorder.pause()
        self._stop_tickers()
        self.is_paused = True
        self.audio_level = 0.0

    def resume(self) -> None:
        if self._recorder is None or not self.is_paused:
            return
        self._recorder.resume()
        self.is_paused = False
        self._start_tickers()

    def stop(self) -> float:
        """Halt capture and return the elapsed duration in seconds."""
        if self._recorder is None:
            raise RuntimeError("Recording is not active.")
        elapsed = self._elapsed_ms / 1000
        self._halt()
        logging.info("Recording stopped after %.1fs", elapsed)
        return elapsed

    def cancel(self) -> None:
        """Halt capture and delete the in-progress artifact."""
        if self._recorder is None:
            return
        path = self._path
        self._halt()
        if path is not None:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logging.warning("Could not delete cancelled recording %s: %s", path, exc)
        logging.info("Recording cancelled")

    def _halt(self) -> None:
        recorder = self._recorder
        self._recorder = None
        self._stop_tickers()
        self.is_recording = False
        self.is_paused = False
        try:
            if recorder is not None:
                recorder.stop()
        except Exception:
            logging.exception("Recorder failed to stop cleanly")
        self._path = None
        self.duration = 0.0
        self.audio_level = 0.0

    def _start_tickers(self) -> None:
        self._duration_ticker = self._clock.every(self._duration_interval, self._on_duration_tick)
        self._level_ticker = self._clock.every(self._level_interval, self._on_level_tick)

    def _stop_tickers(self) -> None:
        for ticker in (self._duration_ticker, self._level_ticker):
            if ticker is not None:
                ticker.cancel()
        self._duration_ticker = None
        self._level_ticker = None

    def _on_duration_tick(self) -> None:
        # A tick may already be queued when the session stops.
        if self._recorder is None or self.is_paused:
            return

        self._elapsed_ms = min(self._elapsed_ms + self._tick_ms, self._max_ms)
        self.duration = self._elapsed_ms / 1000

        if not self._warned and self._elapsed_ms >= self._warning_ms:
            self._warned = True
            self.duration_warning.emit(self.duration)

        if self._elapsed_ms >= self._max_ms:
            final = self.stop()
            self.max_duration_reached.emit(final)

    def _on_level_tick(self) -> None:
        if self._recorder is None or self.is_paused:
            return
        self.audio_level = normalize_level(self._recorder.average_power())
