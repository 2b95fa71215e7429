import asyncio

import numpy as np
import pytest

from voicenotes.artifacts import ArtifactStore
from voicenotes.capabilities import Capability, CapabilityStatus
from voicenotes.clock import ManualClock
from voicenotes.errors import DeviceUnavailable, PermissionDenied
from voicenotes.recorder import AudioCaptureSession, block_power_db, normalize_level

from .helpers import FakeGate, FakeRecorder


def _session(tmp_path, gate=None, factory=None, **options):
    clock = ManualClock()
    recorders = []

    def default_factory():
        recorder = FakeRecorder()
        recorders.append(recorder)
        return recorder

    session = AudioCaptureSession(
        factory or default_factory,
        ArtifactStore(tmp_path / "Recordings"),
        gate or FakeGate(),
        clock,
        **options,
    )
    return session, clock, recorders


@pytest.mark.parametrize(
    "power, expected",
    [(-60.0, 0.0), (0.0, 1.0), (-30.0, 0.5), (-15.0, 0.75), (-90.0, 0.0), (-160.0, 0.0), (6.0, 1.0)],
)
def test_normalize_level_clamps_then_maps(power, expected):
    assert normalize_level(power) == pytest.approx(expected)


def test_block_power_db():
    assert block_power_db(np.zeros(128, dtype=np.float32)) == -160.0
    assert block_power_db(np.ones(128, dtype=np.float32)) == pytest.approx(0.0)
    assert block_power_db(np.full(128, 0.1, dtype=np.float32)) == pytest.approx(-20.0, abs=1e-4)


def test_start_creates_artifact_and_ticks_duration(tmp_path):
    session, clock, recorders = _session(tmp_path)

    path = asyncio.run(session.start())
    assert path.exists()
    assert path.name.startswith("recording_")
    assert session.is_recording

    clock.advance(15.0)
    assert session.duration == 15.0

    assert session.stop() == 15.0
    assert recorders[0].stopped
    assert path.exists()
    assert session.duration == 0.0
    assert session.audio_level == 0.0
    assert clock.active_tickers == 0


def test_level_metering_follows_recorder_power(tmp_path):
    session, clock, recorders = _session(tmp_path)
    asyncio.run(session.start())

    recorders[0].power = -30.0
    clock.advance(0.05)
    assert session.audio_level == pytest.approx(0.5)

    recorders[0].power = -120.0
    clock.advance(0.05)
    assert session.audio_level == 0.0


def test_start_without_microphone_permission(tmp_path):
    gate = FakeGate({Capability.MICROPHONE: CapabilityStatus.DENIED})
    session, clock, recorders = _session(tmp_path, gate=gate)

    with pytest.raises(PermissionDenied):
        asyncio.run(session.start())
    assert not session.is_recording
    assert recorders == []
    assert list((tmp_path / "Recordings").glob("*")) == []


def test_recorder_failure_is_device_unavailable(tmp_path):
    def broken():
        raise OSError("no input device")

    session, clock, _ = _session(tmp_path, factory=broken)
    with pytest.raises(DeviceUnavailable):
        asyncio.run(session.start())
    assert not session.is_active
    assert clock.active_tickers == 0


def test_pause_and_resume_keep_accumulated_duration(tmp_path):
    session, clock, recorders = _session(tmp_path)
    asyncio.run(session.start())

    clock.advance(1.0)
    session.pause()
    session.pause()
    clock.advance(5.0)
    assert session.duration == 1.0
    assert session.audio_level == 0.0
    assert recorders[0].pauses == 1

    session.resume()
    session.resume()
    clock.advance(1.0)
    assert session.duration == 2.0
    assert recorders[0].resumes == 1


def test_cancel_deletes_artifact(tmp_path):
    session, clock, recorders = _session(tmp_path)
    path = asyncio.run(session.start())
    clock.advance(3.0)

    session.cancel()
    assert not path.exists()
    assert not session.is_recording
    assert session.duration == 0.0
    assert clock.active_tickers == 0


def test_stop_when_idle_raises(tmp_path):
    session, _, _ = _session(tmp_path)
    with pytest.raises(RuntimeError):
        session.stop()


def test_ceiling_stops_exactly_at_max_duration(tmp_path):
    session, clock, recorders = _session(tmp_path)
    reached = []
    session.max_duration_reached.connect(reached.append)
    path = asyncio.run(session.start())

    clock.advance(130.0)

    assert reached == [120.0]
    assert not session.is_recording
    assert recorders[0].stopped
    assert path.exists()
    assert clock.active_tickers == 0


def test_ceiling_is_never_exceeded_with_coarse_ticks(tmp_path):
    session, clock, _ = _session(tmp_path, duration_interval=0.7)
    reached = []
    session.max_duration_reached.connect(reached.append)
    asyncio.run(session.start())

    clock.advance(200.0)
    assert reached == [120.0]


@pytest.mark.parametrize("interval", [0.1, 0.3, 0.7, 2.5])
def test_warning_fires_once_per_session(tmp_path, interval):
    session, clock, _ = _session(tmp_path, duration_interval=interval)
    warnings = []
    session.duration_warning.connect(warnings.append)

    asyncio.run(session.start())
    clock.advance(95.0)
    session.pause()
    session.resume()
    clock.advance(10.0)
    assert len(warnings) == 1
    assert warnings[0] >= 90.0
    session.stop()

    asyncio.run(session.start())
    clock.advance(91.0)
    assert len(warnings) == 2
