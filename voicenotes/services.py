"""Construction of the service graph from a :class:`Config`."""

from __future__ import annotations

from typing import Callable, Optional

from . import config as config_mod
from .artifacts import ArtifactStore
from .capabilities import CapabilityGate, PromptingCapabilityGate
from .clock import AsyncioClock, Clock
from .location import LocationSnapshotService, NominatimGeocoder, StaticLocationProvider
from .models import Config, LocationFix
from .orchestrator import RecordingOrchestrator
from .recorder import AudioCaptureSession, AudioRecorder, SoundDeviceRecorder
from .storage import NoteStore
from .transcriber import TranscriptionBackend, TranscriptionEngine, WhisperBackend, language_from_locale


class _NoLocationProvider:
    """Provider used when no coordinate is configured; never produces a fix."""

    def cached_fix(self) -> Optional[LocationFix]:
        return None

    async def request_fix(self) -> LocationFix:
        raise LookupError("No location source configured.")


def build_artifacts(cfg: Config) -> ArtifactStore:
    return ArtifactStore(config_mod.recordings_dir(cfg))


def build_store(cfg: Config) -> NoteStore:
    return NoteStore(config_mod.database_path(cfg), build_artifacts(cfg))


def build_gate(cfg: Config, prompt: Callable[[str], bool]) -> PromptingCapabilityGate:
    def persist(decisions: dict) -> None:
        config_mod.update_config(capabilities=decisions)

    return PromptingCapabilityGate(prompt, decisions=cfg.capabilities, on_decision=persist)


def build_orchestrator(
    cfg: Config,
    gate: CapabilityGate,
    store: Optional[NoteStore] = None,
    clock: Optional[Clock] = None,
    recorder_factory: Optional[Callable[[], AudioRecorder]] = None,
    backend_factory: Optional[Callable[[], TranscriptionBackend]] = None,
) -> RecordingOrchestrator:
    store = store or build_store(cfg)
    session = AudioCaptureSession(
        recorder_factory or (lambda: SoundDeviceRecorder(samplerate=cfg.samplerate)),
        store.artifacts,
        gate,
        clock or AsyncioClock(),
        max_duration=cfg.max_duration,
        warning_threshold=cfg.warning_threshold,
        duration_interval=cfg.duration_interval,
        level_interval=cfg.level_interval,
    )

    if cfg.latitude is not None and cfg.longitude is not None:
        provider = StaticLocationProvider(cfg.latitude, cfg.longitude)
        geocoder = NominatimGeocoder(cfg.geocoder_url) if cfg.geocoder_url else None
    else:
        provider = _NoLocationProvider()
        geocoder = None
    location_service = LocationSnapshotService(
        gate,
        provider,
        geocoder,
        grace_period=cfg.location_grace_period,
        timeout=cfg.location_timeout,
        max_age=cfg.location_max_age,
    )

    engine = TranscriptionEngine(
        gate,
        backend_factory
        or (lambda: WhisperBackend(cfg.whisper_model, language=language_from_locale(cfg.locale))),
    )
    return RecordingOrchestrator(session, location_service, engine, store)
