"""Recording state machine coordinating capture, location and transcription."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Set

from .errors import DeviceUnavailable, PermissionDenied, VoiceNotesError
from .events import Observable, ObservableField
from .location import LocationSnapshotService
from .models import Alert, LocationSnapshot, Note
from .recorder import AudioCaptureSession
from .storage import NoteStore, StorageError
from .transcriber import TranscriptionEngine


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


ACTIVE_STATES = (RecordingState.RECORDING, RecordingState.PAUSED)


def format_duration(seconds: float) -> str:
    """Format a duration as ``MM:SS``."""

    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


class RecordingOrchestrator(Observable):
    """Drive one recording at a time from start to a saved, transcribed note.

    Every method must be called from the same asyncio event loop. Transcription
    runs as a detached task: ending or cancelling a recording never cancels
    it, and it only ever touches the note store.
    """

    state: RecordingState = ObservableField(RecordingState.IDLE)
    duration: float = ObservableField(0.0)
    audio_level: float = ObservableField(0.0)
    location: Optional[LocationSnapshot] = ObservableField(None)
    alert: Optional[Alert] = ObservableField(None)
    showing_save_confirmation: bool = ObservableField(False)
    showing_max_duration_warning: bool = ObservableField(False)
    is_transcribing: bool = ObservableField(False)
    last_note: Optional[Note] = ObservableField(None)

    def __init__(
        self,
        session: AudioCaptureSession,
        location_service: LocationSnapshotService,
        transcription_engine: TranscriptionEngine,
        store: NoteStore,
    ) -> None:
        self._session = session
        self._location_service = location_service
        self._engine = transcription_engine
        self._store = store
        self._artifact_path: Optional[Path] = None
        self._location_task: Optional[asyncio.Task] = None
        self._starting = False
        self._transcriptions: Set[asyncio.Task] = set()

        session.observe("duration", self._on_duration)
        session.observe("audio_level", self._on_audio_level)
        session.duration_warning.connect(self._on_duration_warning)
        session.max_duration_reached.connect(self._on_max_duration_reached)

    @property
    def is_recording(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_paused(self) -> bool:
        return self.state is RecordingState.PAUSED

    @property
    def pending_transcriptions(self) -> int:
        return len(self._transcriptions)

    async def start_recording(self) -> bool:
        """Start a recording; return whether capture actually began."""

        if self.is_recording or self._starting:
            logging.warning("Ignoring start request: a recording is already active")
            return False

        self._starting = True
        self.alert = None
        self.showing_save_confirmation = False
        self.location = None
        self.last_note = None
        location_task = asyncio.ensure_future(self._location_service.capture_location())
        self._location_task = location_task
        location_task.add_done_callback(self._attach_location)
        try:
            path = await self._session.start()
        except PermissionDenied as exc:
            self._reset_session_state()
            self.alert = Alert("permission_denied", str(exc), offer_settings=True)
            self.state = RecordingState.IDLE
            return False
        except DeviceUnavailable as exc:
            self._reset_session_state()
            self.alert = Alert("device_unavailable", str(exc))
            self.state = RecordingState.IDLE
            return False
        finally:
            self._starting = False

        self._artifact_path = path
        self.state = RecordingState.RECORDING
        return True

    def stop_recording(self) -> Optional[Note]:
        if not self.is_recording:
            return None
        duration = self._session.stop()
        return self._finish(duration)

    def cancel_recording(self) -> None:
        if not self.is_recording:
            return
        self._session.cancel()
        self._reset_session_state()
        self.state = RecordingState.CANCELLED

    def pause_recording(self) -> None:
        if self.state is not RecordingState.RECORDING:
            return
        self._session.pause()
        self.state = RecordingState.PAUSED

    def resume_recording(self) -> None:
        if self.state is not RecordingState.PAUSED:
            return
        self._session.resume()
        self.state = RecordingState.RECORDING

    def dismiss_alert(self) -> None:
        self.alert = None

    async def wait_for_transcriptions(self) -> None:
        """Wait for every dispatched transcription to resolve."""
        while self._transcriptions:
            await asyncio.gather(*list(self._transcriptions), return_exceptions=True)

    def _finish(self, duration: float) -> Optional[Note]:
        path = self._artifact_path
        location = self.location
        note: Optional[Note] = None
        if path is not None:
            try:
                note = self._store.create_note(path.name, duration, location)
            except StorageError as exc:
                logging.exception("Failed to save recording %s", path.name)
                self.alert = Alert("storage_error", f"Could not save the recording: {exc}")
            else:
                self.showing_save_confirmation = True
                self.last_note = note
                self._dispatch_transcription(note, path)
        self._reset_session_state()
        self.state = RecordingState.STOPPED
        return note

    def _reset_session_state(self) -> None:
        self._discard_location_task()
        self._artifact_path = None
        self.location = None
        self.showing_max_duration_warning = False

    def _discard_location_task(self) -> None:
        task = self._location_task
        self._location_task = None
        if task is not None and not task.done():
            task.cancel()

    def _attach_location(self, task: asyncio.Task) -> None:
        if task is not self._location_task or task.cancelled():
            return
        if task.exception() is not None:
            logging.warning("Location capture failed: %s", task.exception())
            return
        self.location = task.result()

    def _dispatch_transcription(self, note: Note, path: Path) -> None:
        task = asyncio.get_running_loop().create_task(self._transcribe(note.id, path))
        self._transcriptions.add(task)
        self.is_transcribing = True
        task.add_done_callback(self._transcription_done)

    def _transcription_done(self, task: asyncio.Task) -> None:
        self._transcriptions.discard(task)
        self.is_transcribing = bool(self._transcriptions)

    async def _transcribe(self, note_id: str, path: Path) -> None:
        try:
            transcript = await self._engine.transcribe(path)
        except VoiceNotesError as exc:
            logging.warning("Transcription of note %s failed: %s", note_id, exc)
            self._record_transcription(note_id, None)
        except Exception:
            logging.exception("Unexpected transcription error for note %s", note_id)
            self._record_transcription(note_id, None)
        else:
            self._record_transcription(note_id, transcript)

    def _record_transcription(self, note_id: str, transcript: Optional[str]) -> None:
        try:
            self._store.update_transcription(note_id, transcript=transcript, is_transcribing=False)
        except StorageError as exc:
            # The note may have been deleted while transcription was running.
            logging.warning("Could not store transcription for note %s: %s", note_id, exc)

    def _on_duration(self, value: float) -> None:
        self.duration = value

    def _on_audio_level(self, value: float) -> None:
        self.audio_level = value

    def _on_duration_warning(self, _duration: float) -> None:
        self.showing_max_duration_warning = True

    def _on_max_duration_reached(self, duration: float) -> None:
        if not self.is_recording:
            return
        logging.info("Maximum duration of %.0fs reached; stopping", duration)
        self._finish(duration)
