"""Dataclasses describing persistent and transient objects for voicenotes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass(slots=True)
class Note:
    """Represents a stored voice note."""

    id: str
    created_at: datetime
    audio_filename: str
    duration: float
    transcript: Optional[str] = None
    is_transcribing: bool = True
    place_name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    # Reserved for future analytics, never computed here.
    heart_rate: float = 0.0
    heart_rate_variability: float = 0.0
    respiratory_rate: float = 0.0
    mood_score: float = 0.0

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True, slots=True)
class LocationFix:
    """A raw coordinate reported by a location provider."""

    latitude: float
    longitude: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class Place:
    place_name: Optional[str]
    address: Optional[str]


@dataclass(frozen=True, slots=True)
class LocationSnapshot:
    """One-shot location lookup attached to a recording."""

    latitude: float
    longitude: float
    place_name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Alert:
    """User-facing problem raised by the recording orchestrator."""

    kind: str
    message: str
    offer_settings: bool = False


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    recordings_dir: Optional[str] = None
    database_path: Optional[str] = None
    max_duration: float = 120.0
    warning_threshold: float = 90.0
    duration_interval: float = 0.1
    level_interval: float = 0.05
    location_grace_period: float = 0.5
    location_timeout: float = 5.0
    location_max_age: float = 60.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocoder_url: str = "https://nominatim.openstreetmap.org"
    locale: str = "en-US"
    whisper_model: str = "base"
    samplerate: int = 44100
    capabilities: Dict[str, bool] = field(default_factory=dict)
