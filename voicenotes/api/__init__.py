"""FastAPI application for browsing and playing back saved voice notes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import BaseModel

from ..library import format_storage_size
from ..models import Note
from ..storage import NoteStore, StorageError


class HealthResponse(BaseModel):
    status: str = "ok"
    notes: int


class NotePayload(BaseModel):
    id: str
    created_at: datetime
    audio_filename: str
    duration: float
    transcript: Optional[str]
    is_transcribing: bool
    place_name: Optional[str]
    address: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]


class StorageResponse(BaseModel):
    bytes: int
    display: str


def _note_to_payload(note: Note) -> NotePayload:
    return NotePayload(
        id=note.id,
        created_at=note.created_at,
        audio_filename=note.audio_filename,
        duration=note.duration,
        transcript=note.transcript,
        is_transcribing=note.is_transcribing,
        place_name=note.place_name,
        address=note.address,
        latitude=note.latitude,
        longitude=note.longitude,
    )


def create_app(store: NoteStore) -> FastAPI:
    app = FastAPI(
        title="voicenotes API",
        description="Browse, play back and delete recorded voice notes.",
        version="0.1.0",
    )

    async def _get_note(note_id: str) -> Note:
        try:
            return await run_in_threadpool(store.get_note, note_id)
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck() -> HealthResponse:
        return HealthResponse(notes=len(store.notes))

    @app.get("/notes", response_model=list[NotePayload])
    async def list_notes() -> list[NotePayload]:
        await run_in_threadpool(store.refresh)
        return [_note_to_payload(note) for note in store.notes]

    @app.get("/notes/{note_id}", response_model=NotePayload)
    async def get_note(note_id: str) -> NotePayload:
        return _note_to_payload(await _get_note(note_id))

    @app.get("/notes/{note_id}/audio")
    async def get_note_audio(note_id: str) -> FileResponse:
        note = await _get_note(note_id)
        path = store.artifacts.path_for(note.audio_filename)
        if not await run_in_threadpool(path.is_file):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Audio for note {note_id} is missing",
            )
        return FileResponse(path, media_type="audio/wav", filename=note.audio_filename)

    @app.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_note(note_id: str) -> None:
        await _get_note(note_id)
        try:
            await run_in_threadpool(store.delete_note, note_id)
        except StorageError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
            ) from exc

    @app.get("/storage", response_model=StorageResponse)
    async def storage_usage() -> StorageResponse:
        used = await run_in_threadpool(store.artifacts.total_bytes_used)
        return StorageResponse(bytes=used, display=format_storage_size(used))

    return app
