"""Exceptions shared by the recording, location and transcription services."""

from __future__ import annotations


class VoiceNotesError(RuntimeError):
    """Base class for recoverable voicenotes failures."""


class PermissionDenied(VoiceNotesError):
    """The user declined, or previously declined, a capability."""

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"Permission for {capability} was denied.")


class DeviceUnavailable(VoiceNotesError):
    """Recording hardware or a recognition engine cannot start."""


class EngineUnavailable(DeviceUnavailable):
    """The on-device speech recogniser cannot run on this machine."""


class TranscriptionFailed(VoiceNotesError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Transcription failed: {reason}")

