"""SQLite backed persistence for voice notes."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .artifacts import ArtifactStore
from .events import Observable, ObservableField
from .models import LocationSnapshot, Note

SCHEMA_VERSION = 1


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NoteStore(Observable):
    """Manage persistence of voice notes using SQLite.

    ``notes`` mirrors the table ordered by recency and is refreshed after
    every successful write, so views can observe it instead of polling.
    Reads and writes are serialised with a lock because transcription
    results arrive from background tasks.
    """

    notes: Tuple[Note, ...] = ObservableField(())

    def __init__(
        self,
        db_path: Path,
        artifacts: ArtifactStore,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = Path(db_path)
        self.artifacts = artifacts
        self._now = now
        self._lock = threading.RLock()
        self._ensure_initialised()
        self.refresh()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open note database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"Note database error: {exc}") from exc
        finally:
            conn.close()

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    audio_filename TEXT NOT NULL,
                    duration REAL NOT NULL,
                    transcript TEXT,
                    is_transcribing INTEGER NOT NULL DEFAULT 1,
                    place_name TEXT,
                    address TEXT,
                    latitude REAL,
                    longitude REAL,
                    heart_rate REAL NOT NULL DEFAULT 0,
                    heart_rate_variability REAL NOT NULL DEFAULT 0,
                    respiratory_rate REAL NOT NULL DEFAULT 0,
                    mood_score REAL NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            row = cur.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def create_note(
        self,
        audio_filename: str,
        duration: float,
        location: Optional[LocationSnapshot] = None,
    ) -> Note:
        note_id = uuid.uuid4().hex
        created_at = self._now()
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO notes(id, created_at, audio_filename, duration, is_transcribing,
                                      place_name, address, latitude, longitude)
                    VALUES(?, ?, ?, ?, 1, ?, ?, ?, ?)
                    """,
                    (
                        note_id,
                        created_at.isoformat(),
                        audio_filename,
                        duration,
                        location.place_name if location else None,
                        location.address if location else None,
                        location.latitude if location else None,
                        location.longitude if location else None,
                    ),
                )
            logging.info("Saved note %s (%s, %.1fs)", note_id, audio_filename, duration)
            self.refresh()
            return self.get_note(note_id)

    def list_notes(self) -> List[Note]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM notes ORDER BY created_at DESC, rowid DESC").fetchall()
        return [_row_to_note(row) for row in rows]

    def get_note(self, note_id: str) -> Note:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        if row is None:
            raise StorageError(f"Note with id {note_id} not found")
        return _row_to_note(row)

    def update_transcription(
        self,
        note_id: str,
        transcript: Optional[str] = None,
        is_transcribing: Optional[bool] = None,
    ) -> Note:
        assignments = []
        values: list = []
        if transcript is not None:
            assignments.append("transcript = ?")
            values.append(transcript)
        if is_transcribing is not None:
            assignments.append("is_transcribing = ?")
            values.append(int(is_transcribing))
        with self._lock:
            if not assignments:
                return self.get_note(note_id)
            with self._connect() as conn:
                cur = conn.execute(
                    f"UPDATE notes SET {', '.join(assignments)} WHERE id = ?",
                    (*values, note_id),
                )
                if cur.rowcount == 0:
                    raise StorageError(f"Note with id {note_id} not found")
            self.refresh()
            return self.get_note(note_id)

    def delete_note(self, note_id: str) -> None:
        """Delete a note and, best-effort, its audio artifact.

        The row goes first so a failed delete never leaves a listed note
        without its audio.
        """
        with self._lock:
            note = self.get_note(note_id)
            try:
                with self._connect() as conn:
                    conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            except StorageError:
                logging.exception("Failed to delete note %s", note_id)
                raise
            try:
                self.artifacts.delete(note.audio_filename)
            except OSError as exc:
                logging.warning("Could not delete audio for note %s: %s", note_id, exc)
            logging.info("Deleted note %s", note_id)
            self.refresh()

    def refresh(self) -> None:
        """Reload the observable ``notes`` collection from disk."""
        try:
            notes = self.list_notes()
        except StorageError:
            logging.exception("Failed to fetch notes")
            return
        self.notes = tuple(notes)


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        audio_filename=row["audio_filename"],
        duration=row["duration"],
        transcript=row["transcript"],
        is_transcribing=bool(row["is_transcribing"]),
        place_name=row["place_name"],
        address=row["address"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        heart_rate=row["heart_rate"],
        heart_rate_variability=row["heart_rate_variability"],
        respiratory_rate=row["respiratory_rate"],
        mood_score=row["mood_score"],
    )
