"""Fakes standing in for the microphone, permission prompts, speech model and GPS."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import numpy as np

from voicenotes.artifacts import ArtifactStore
from voicenotes.capabilities import Capability, CapabilityStatus
from voicenotes.clock import ManualClock
from voicenotes.location import LocationSnapshotService
from voicenotes.models import LocationFix, Place
from voicenotes.orchestrator import RecordingOrchestrator
from voicenotes.recorder import AudioCaptureSession
from voicenotes.storage import NoteStore
from voicenotes.transcriber import TranscriptionEngine


class FakeGate:
    """Capability gate with scripted answers."""

    def __init__(self, statuses: Optional[Dict[Capability, CapabilityStatus]] = None, answers=None, delay=0.0):
        self.statuses = {kind: CapabilityStatus.GRANTED for kind in Capability}
        self.statuses.update(statuses or {})
        self.answers = answers or {}
        self.delay = delay
        self.requests: List[Capability] = []

    def status(self, kind):
        return self.statuses[kind]

    def has_capability(self, kind):
        return self.statuses[kind] is CapabilityStatus.GRANTED

    async def request_capability(self, kind):
        self.requests.append(kind)
        if self.statuses[kind] is CapabilityStatus.UNDETERMINED:
            if self.delay:
                await asyncio.sleep(self.delay)
            granted = self.answers.get(kind, True)
            self.statuses[kind] = CapabilityStatus.GRANTED if granted else CapabilityStatus.DENIED
        return self.statuses[kind] is CapabilityStatus.GRANTED


class FakeRecorder:
    def __init__(self, power: float = -30.0) -> None:
        self.power = power
        self.path: Optional[Path] = None
        self.pauses = 0
        self.resumes = 0
        self.stopped = False

    def start(self, path: Path) -> None:
        self.path = path
        path.write_bytes(b"RIFF----WAVE")

    def pause(self) -> None:
        self.pauses += 1

    def resume(self) -> None:
        self.resumes += 1

    def stop(self) -> None:
        self.stopped = True

    def average_power(self) -> float:
        return self.power


class FakeBackend:
    on_device = True

    def __init__(self, text: Optional[str] = "hello world", error: Optional[Exception] = None, gate=None):
        self.text = text
        self.error = error
        self.gate = gate
        self.calls: List[Path] = []

    def transcribe(self, audio_path: Path) -> Optional[str]:
        self.calls.append(audio_path)
        if self.gate is not None:
            assert self.gate.wait(timeout=5), "backend was never released"
        if self.error is not None:
            raise self.error
        return self.text


class FakeSoundFile:
    """Stands in for the `soundfile` module: every file is silence of a fixed length."""

    def __init__(self, samplerate: int = 8000, seconds: float = 1.0) -> None:
        self.samplerate = samplerate
        self.frames = int(samplerate * seconds)

    def info(self, path):
        return SimpleNamespace(frames=self.frames, samplerate=self.samplerate)

    def read(self, path, dtype="float32"):
        return np.zeros(self.frames, dtype=dtype), self.samplerate


class FakeSoundDevice:
    """Stands in for the `sounddevice` module and records playback calls."""

    def __init__(self, interrupt: bool = False) -> None:
        self.interrupt = interrupt
        self.played: List[tuple] = []
        self.stops = 0

    def play(self, data, samplerate):
        self.played.append((len(data), samplerate))

    def wait(self):
        if self.interrupt:
            raise KeyboardInterrupt

    def stop(self):
        self.stops += 1


class FakeProvider:
    def __init__(self, fix: Optional[LocationFix] = None, cached: Optional[LocationFix] = None, hang: bool = False):
        self.fix = fix or LocationFix(52.52, 13.405, datetime.now(timezone.utc))
        self.cached = cached
        self.hang = hang
        self.requests = 0

    def cached_fix(self):
        return self.cached

    async def request_fix(self):
        self.requests += 1
        if self.hang:
            await asyncio.Event().wait()
        return self.fix


class FakeGeocoder:
    def __init__(self, place: Optional[Place] = None, error: Optional[Exception] = None):
        self.place = place if place is not None else Place("Brandenburg Gate", "Pariser Platz, Berlin, Berlin")
        self.error = error

    async def reverse_geocode(self, latitude, longitude):
        if self.error is not None:
            raise self.error
        return self.place


class Harness:
    """Wires an orchestrator from fakes; build it inside a running loop."""

    def __init__(self, tmp_path: Path) -> None:
        self.clock = ManualClock()
        self.artifacts = ArtifactStore(tmp_path / "Recordings")
        self.store = NoteStore(tmp_path / "notes.db", self.artifacts)
        self.gate = FakeGate()
        self.recorders: List[FakeRecorder] = []
        self.backend = FakeBackend()
        self.provider = FakeProvider()
        self.geocoder = FakeGeocoder()
        self.recorder_error: Optional[Exception] = None
        self._counter = 0

    def _recorder_factory(self) -> FakeRecorder:
        if self.recorder_error is not None:
            raise self.recorder_error
        recorder = FakeRecorder()
        self.recorders.append(recorder)
        return recorder

    def _artifact_clock(self) -> float:
        self._counter += 1
        return 1_700_000_000 + self._counter

    def build(self, **session_options) -> RecordingOrchestrator:
        self.artifacts._clock = self._artifact_clock
        self.session = AudioCaptureSession(
            self._recorder_factory,
            self.artifacts,
            self.gate,
            self.clock,
            **session_options,
        )
        location = LocationSnapshotService(
            self.gate, self.provider, self.geocoder, grace_period=0.05, timeout=0.2
        )
        engine = TranscriptionEngine(self.gate, lambda: self.backend)
        return RecordingOrchestrator(self.session, location, engine, self.store)


async def settle():
    """Let pending callbacks and short tasks run."""
    await asyncio.sleep(0.01)
