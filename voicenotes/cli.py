"""Command line interface for the voicenotes application."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from typing import Dict, Optional

import typer
from rich.live import Live
from rich.text import Text

from . import __version__
from . import config as config_mod
from .capabilities import Capability, CapabilityStatus
from .config import ConfigError
from .library import format_storage_size, group_notes_by_date
from .models import Config, Note
from .orchestrator import ACTIVE_STATES, RecordingOrchestrator, RecordingState, format_duration
from .player import AudioPlayer
from .services import build_gate, build_orchestrator, build_store
from .storage import NoteStore, StorageError

app = typer.Typer(add_completion=False, help="Record, transcribe and browse voice notes.")

LEVEL_BAR_WIDTH = 20
RENDERED_FIELDS = ("duration", "audio_level", "location", "state", "showing_max_duration_warning")


def _load_config() -> Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _open_store(cfg: Config) -> NoteStore:
    try:
        return build_store(cfg)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _resolve_note(store: NoteStore, ident: str) -> Note:
    """Find a note by full id or unambiguous id prefix."""

    matches = [note for note in store.list_notes() if note.id.startswith(ident)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        typer.secho(f"Note {ident} not found.", fg=typer.colors.RED, err=True)
    else:
        typer.secho(f"Note id {ident} is ambiguous; use more characters.", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _confirm(question: str) -> bool:
    return typer.confirm(question, default=True)


def _level_bar(level: float) -> str:
    filled = round(level * LEVEL_BAR_WIDTH)
    return "█" * filled + "░" * (LEVEL_BAR_WIDTH - filled)


def _place_label(note: Note) -> str:
    if note.place_name:
        return note.place_name
    if note.has_location:
        return f"{note.latitude:.4f}, {note.longitude:.4f}"
    return "-"


def _transcript_label(note: Note) -> str:
    if note.is_transcribing:
        return "(transcribing…)"
    if not note.transcript:
        return "(no transcript)"
    return note.transcript


def _render(orchestrator: RecordingOrchestrator) -> Text:
    text = Text()
    if orchestrator.is_paused:
        text.append("❚❚ PAUSED ", style="bold yellow")
    else:
        text.append("● REC ", style="bold red")
    text.append(format_duration(orchestrator.duration))
    text.append(f"  {_level_bar(orchestrator.audio_level)}", style="cyan")
    text.append("\nEnter: stop   p: pause/resume   c or Ctrl-C: cancel", style="dim")
    snapshot = orchestrator.location
    if snapshot is not None:
        place = snapshot.place_name or f"{snapshot.latitude:.4f}, {snapshot.longitude:.4f}"
        text.append(f"\nLocation: {place}", style="green")
    if orchestrator.showing_max_duration_warning:
        text.append("\nRecording will stop automatically soon.", style="bold yellow")
    return text


async def _finish_transcriptions(orchestrator: RecordingOrchestrator) -> None:
    """Wait for pending transcripts. Ctrl-C is ignored so no note stays marked as transcribing."""

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(
        signal.SIGINT,
        lambda: typer.secho(
            "Still transcribing; voicenotes exits once the transcript is saved.",
            fg=typer.colors.YELLOW,
            err=True,
        ),
    )
    try:
        await orchestrator.wait_for_transcriptions()
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _record(cfg: Config, store: NoteStore) -> int:
    gate = build_gate(cfg, _confirm)
    # Ask up front so permission prompts never compete with the recording controls.
    for kind in Capability:
        if gate.status(kind) is CapabilityStatus.UNDETERMINED:
            await gate.request_capability(kind)

    orchestrator = build_orchestrator(cfg, gate, store=store)
    if not await orchestrator.start_recording():
        alert = orchestrator.alert
        typer.secho(alert.message if alert else "Recording could not start.", fg=typer.colors.RED, err=True)
        if alert is not None and alert.offer_settings:
            typer.echo("Run `voicenotes permissions --grant microphone` to allow recording.", err=True)
        return 1

    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    commands: asyncio.Queue = asyncio.Queue()

    def on_state(state: RecordingState) -> None:
        if state not in ACTIVE_STATES:
            finished.set()

    orchestrator.observe("state", on_state)
    stdin_fd = sys.stdin.fileno()
    loop.add_reader(stdin_fd, lambda: commands.put_nowait(sys.stdin.readline().strip().lower()))
    loop.add_signal_handler(signal.SIGINT, orchestrator.cancel_recording)
    try:
        with Live(_render(orchestrator), refresh_per_second=10, transient=True) as live:
            for name in RENDERED_FIELDS:
                orchestrator.observe(name, lambda _value: live.update(_render(orchestrator)))
            while not finished.is_set():
                getter = asyncio.ensure_future(commands.get())
                stopper = asyncio.ensure_future(finished.wait())
                done, pending = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
                if getter not in done:
                    break
                command = getter.result()
                if command == "p":
                    if orchestrator.is_paused:
                        orchestrator.resume_recording()
                    else:
                        orchestrator.pause_recording()
                elif command == "c":
                    orchestrator.cancel_recording()
                elif command == "":
                    orchestrator.stop_recording()
    finally:
        loop.remove_reader(stdin_fd)
        loop.remove_signal_handler(signal.SIGINT)

    if orchestrator.state is RecordingState.CANCELLED:
        typer.secho("Recording discarded.", fg=typer.colors.YELLOW)
        return 0

    note = orchestrator.last_note
    if note is None:
        alert = orchestrator.alert
        typer.secho(alert.message if alert else "Recording was not saved.", fg=typer.colors.RED, err=True)
        return 1

    typer.secho(
        f"Saved note {note.id[:8]} ({format_duration(note.duration)}).",
        fg=typer.colors.BLUE,
    )
    typer.echo("Transcribing…")
    await _finish_transcriptions(orchestrator)
    try:
        note = store.get_note(note.id)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        return 1
    typer.echo("\n" + _transcript_label(note))
    return 0


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if version:
        typer.echo(f"voicenotes v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def record() -> None:  # pragma: no cover - interactive
    """Record a voice note from the microphone and transcribe it on this machine.

    The command waits for the transcript before exiting so the note is never
    left marked as transcribing.
    """

    cfg = _load_config()
    store = _open_store(cfg)
    code = asyncio.run(_record(cfg, store))
    if code:
        raise typer.Exit(code=code)


@app.command("list")
def list_command() -> None:
    """List saved notes, newest first."""

    cfg = _load_config()
    store = _open_store(cfg)
    notes = store.list_notes()
    if not notes:
        typer.echo("No notes found. Use `voicenotes record` to create one.")
        return

    for label, members in group_notes_by_date(notes):
        typer.secho(label, fg=typer.colors.BLUE, bold=True)
        for note in members:
            created = note.created_at.astimezone().strftime("%H:%M")
            preview = _transcript_label(note).replace("\n", " ")
            if len(preview) > 40:
                preview = preview[:39] + "…"
            typer.echo(
                f"  {note.id[:8]}  {created}  {format_duration(note.duration)}  "
                f"{_place_label(note):<20}  {preview}"
            )


@app.command()
def show(
    note_id: str = typer.Argument(..., help="Identifier (or prefix) of the note to display."),
) -> None:
    """Show a saved note."""

    cfg = _load_config()
    store = _open_store(cfg)
    note = _resolve_note(store, note_id)

    typer.secho(f"Note {note.id}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {note.created_at.astimezone():%Y-%m-%d %H:%M}")
    typer.echo(f"Duration: {format_duration(note.duration)}")
    if note.has_location:
        typer.echo(f"Place: {_place_label(note)}")
        if note.address:
            typer.echo(f"Address: {note.address}")
    if not store.artifacts.exists(note.audio_filename):
        typer.secho("Audio file is missing.", fg=typer.colors.YELLOW)
    typer.echo("\nTranscript:\n" + _transcript_label(note))


@app.command()
def play(
    note_id: str = typer.Argument(..., help="Identifier (or prefix) of the note to play."),
    start: float = typer.Option(0.0, "--start", min=0.0, help="Position in seconds to start from."),
) -> None:
    """Play a saved note's audio. Ctrl-C stops playback."""

    cfg = _load_config()
    store = _open_store(cfg)
    note = _resolve_note(store, note_id)
    path = store.artifacts.path_for(note.audio_filename)

    try:
        player = AudioPlayer()
        length = player.duration(path)
        typer.echo(
            f"Playing {note.id[:8]} from {format_duration(start)} of {format_duration(length)}. "
            "Press Ctrl-C to stop."
        )
        player.play(path, start=start)
    except KeyboardInterrupt:
        typer.secho("Playback stopped.", fg=typer.colors.YELLOW)
    except (RuntimeError, OSError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def delete(
    note_id: str = typer.Argument(..., help="Identifier (or prefix) of the note to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a note and its audio."""

    cfg = _load_config()
    store = _open_store(cfg)
    note = _resolve_note(store, note_id)
    if not yes and not typer.confirm(f"Delete note {note.id[:8]}?", default=False):
        raise typer.Exit()
    try:
        store.delete_note(note.id)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho(f"Note {note.id[:8]} deleted.", fg=typer.colors.BLUE)


@app.command()
def storage() -> None:
    """Show how much disk space recordings use."""

    cfg = _load_config()
    store = _open_store(cfg)
    used = store.artifacts.total_bytes_used()
    count = len(store.notes)
    noun = "note" if count == 1 else "notes"
    typer.echo(f"{count} {noun}, {format_storage_size(used)} of audio in {store.artifacts.directory}")


@app.command()
def permissions(
    grant: Optional[Capability] = typer.Option(None, "--grant", help="Allow a capability."),
    revoke: Optional[Capability] = typer.Option(None, "--revoke", help="Deny a capability."),
    reset: Optional[Capability] = typer.Option(None, "--reset", help="Ask again next time."),
) -> None:
    """Inspect or change microphone, speech recognition and location access."""

    cfg = _load_config()
    gate = build_gate(cfg, _confirm)
    try:
        if grant is not None:
            gate.set_decision(grant, True)
        if revoke is not None:
            gate.set_decision(revoke, False)
        if reset is not None:
            gate.reset(reset)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    for kind in Capability:
        typer.echo(f"{kind.value:<20} {gate.status(kind).value}")


@app.command()
def config(
    recordings_dir: Optional[str] = typer.Option(None, help="Directory where recordings are stored."),
    database_path: Optional[str] = typer.Option(None, help="Path of the notes database."),
    latitude: Optional[float] = typer.Option(None, help="Latitude reported as this machine's location."),
    longitude: Optional[float] = typer.Option(None, help="Longitude reported as this machine's location."),
    geocoder_url: Optional[str] = typer.Option(None, help="Base URL of a Nominatim compatible geocoder."),
    locale: Optional[str] = typer.Option(None, help="Speech locale, for example en-US."),
    whisper_model: Optional[str] = typer.Option(None, help="Whisper model name for on-device transcription."),
    samplerate: Optional[int] = typer.Option(None, help="Recording sample rate in Hz."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "recordings_dir": recordings_dir,
            "database_path": database_path,
            "latitude": latitude,
            "longitude": longitude,
            "geocoder_url": geocoder_url,
            "locale": locale,
            "whisper_model": whisper_model,
            "samplerate": samplerate,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        typer.echo(json.dumps(asdict(cfg), indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
) -> None:  # pragma: no cover - long running
    """Serve the notes library over HTTP."""

    try:
        import uvicorn
    except ImportError as exc:
        typer.secho(
            'The HTTP server needs uvicorn. Install with `pip install "voicenotes[server]"`.',
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc

    from .api import create_app

    cfg = _load_config()
    store = _open_store(cfg)
    uvicorn.run(create_app(store), host=host, port=port, log_level="info")


if __name__ == "__main__":  # pragma: no cover
    app()
