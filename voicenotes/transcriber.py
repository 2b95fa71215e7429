"""On-device speech transcription."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Protocol

from .capabilities import Capability, CapabilityGate, CapabilityStatus
from .errors import EngineUnavailable, PermissionDenied, TranscriptionFailed


class TranscriptionBackend(Protocol):
    """Common interface for transcription backends.

    ``on_device`` must be true: audio never leaves the machine.
    """

    on_device: bool

    def transcribe(self, audio_path: Path) -> Optional[str]:
        """Return the final transcript, or ``None`` when nothing was recognised."""


def language_from_locale(locale: str) -> str:
    """Return the language part of a locale such as ``en-US``."""

    return locale.replace("_", "-").split("-", 1)[0].lower()


class WhisperBackend:
    """Local transcription using the `openai-whisper` package."""

    on_device = True

    def __init__(self, model_name: str, language: Optional[str] = None) -> None:
        self.model_name = model_name
        try:
            import whisper  # type: ignore
            import torch
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `openai-whisper` package is required for local transcription."
            ) from exc
        if language is not None and language not in whisper.tokenizer.LANGUAGES:
            raise RuntimeError(f"Language '{language}' is not supported by Whisper.")
        self.language = language
        self.device = "cuda" if torch.cuda.is_available() else "cpu"
        self._model = whisper.load_model(model_name, device=self.device)

    def transcribe(self, audio_path: Path) -> Optional[str]:  # pragma: no cover - model inference
        result = self._model.transcribe(
            str(audio_path),
            task="transcribe",
            language=self.language,
            temperature=0.0,
            fp16=self.device == "cuda",
        )
        text = result.get("text")
        return text.strip() if text is not None else None


class TranscriptionEngine:
    """Turn finished recordings into text without blocking the event loop.

    The backend is created lazily on first use, in a worker thread, because
    loading a speech model is slow. A backend that cannot be created is
    reported as :class:`EngineUnavailable` on every call.
    """

    def __init__(
        self,
        capabilities: CapabilityGate,
        backend_factory: Callable[[], TranscriptionBackend],
    ) -> None:
        self._capabilities = capabilities
        self._backend_factory = backend_factory
        self._backend: Optional[TranscriptionBackend] = None
        self._backend_lock = asyncio.Lock()

    async def transcribe(self, audio_path: Path) -> str:
        if not await self._ensure_permission():
            raise PermissionDenied(
                Capability.SPEECH_RECOGNITION.value,
                "Speech recognition permission is required for transcription.",
            )

        backend = await self._get_backend()
        try:
            text = await asyncio.to_thread(backend.transcribe, Path(audio_path))
        except Exception as exc:
            raise TranscriptionFailed(str(exc) or type(exc).__name__) from exc
        if text is None:
            raise TranscriptionFailed("No result received")
        return text.strip()

    async def _ensure_permission(self) -> bool:
        status = self._capabilities.status(Capability.SPEECH_RECOGNITION)
        if status is CapabilityStatus.GRANTED:
            return True
        if status is CapabilityStatus.UNDETERMINED:
            return await self._capabilities.request_capability(Capability.SPEECH_RECOGNITION)
        return False

    async def _get_backend(self) -> TranscriptionBackend:
        async with self._backend_lock:
            if self._backend is None:
                try:
                    backend = await asyncio.to_thread(self._backend_factory)
                except Exception as exc:
                    logging.warning("Speech recogniser unavailable: %s", exc)
                    raise EngineUnavailable(f"Speech recognizer is not available: {exc}") from exc
                if not getattr(backend, "on_device", False):
                    raise EngineUnavailable("Only on-device speech recognition is permitted.")
                self._backend = backend
            return self._backend
