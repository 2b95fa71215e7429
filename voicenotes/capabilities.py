"""Capability (permission) gates for microphone, speech and location access."""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Protocol


class Capability(str, Enum):
    MICROPHONE = "microphone"
    SPEECH_RECOGNITION = "speech_recognition"
    LOCATION = "location"


class CapabilityStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class CapabilityGate(Protocol):
    """Common interface for permission gates.

    Implementations must be idempotent and safe to call repeatedly.
    """

    def status(self, kind: Capability) -> CapabilityStatus:
        ...

    def has_capability(self, kind: Capability) -> bool:
        ...

    async def request_capability(self, kind: Capability) -> bool:
        ...


class PromptingCapabilityGate:
    """Ask the user once per capability and remember the answer.

    ``prompt`` is a blocking callable (for instance ``typer.confirm``) and is
    run in a worker thread so the event loop keeps ticking while the user
    decides. ``on_decision`` lets callers persist the answer.
    """

    def __init__(
        self,
        prompt: Callable[[str], bool],
        decisions: Optional[Mapping[str, bool]] = None,
        on_decision: Optional[Callable[[Dict[str, bool]], None]] = None,
    ) -> None:
        self._prompt = prompt
        self._decisions: Dict[str, bool] = dict(decisions or {})
        self._on_decision = on_decision
        self._pending: Dict[Capability, asyncio.Future] = {}
        self._prompt_lock = threading.Lock()

    def status(self, kind: Capability) -> CapabilityStatus:
        decision = self._decisions.get(kind.value)
        if decision is None:
            return CapabilityStatus.UNDETERMINED
        return CapabilityStatus.GRANTED if decision else CapabilityStatus.DENIED

    def has_capability(self, kind: Capability) -> bool:
        return self.status(kind) is CapabilityStatus.GRANTED

    async def request_capability(self, kind: Capability) -> bool:
        current = self.status(kind)
        if current is not CapabilityStatus.UNDETERMINED:
            return current is CapabilityStatus.GRANTED

        # Concurrent requests for the same capability share one prompt.
        pending = self._pending.get(kind)
        if pending is None:
            pending = asyncio.ensure_future(asyncio.to_thread(self._ask, kind))
            self._pending[kind] = pending
            pending.add_done_callback(lambda _fut: self._pending.pop(kind, None))
        return await asyncio.shield(pending)

    def _ask(self, kind: Capability) -> bool:
        label = kind.value.replace("_", " ")
        # One question on the terminal at a time.
        with self._prompt_lock:
            granted = bool(self._prompt(f"Allow voicenotes to use {label}?"))
        self._decisions[kind.value] = granted
        logging.info("Capability %s %s", kind.value, "granted" if granted else "denied")
        if self._on_decision is not None:
            self._on_decision(dict(self._decisions))
        return granted

    def reset(self, kind: Capability) -> None:
        self._decisions.pop(kind.value, None)
        if self._on_decision is not None:
            self._on_decision(dict(self._decisions))

    def set_decision(self, kind: Capability, granted: bool) -> None:
        self._decisions[kind.value] = granted
        if self._on_decision is not None:
            self._on_decision(dict(self._decisions))
