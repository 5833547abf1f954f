"""Core data models for the transcriber."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

SAMPLE_RATE = 16000


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    STOPPING = "STOPPING"


class EventKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    MODEL_READY = "model_ready"


@dataclass
class AudioFrame:
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE
    channels: int = 1
    timestamp_ms: int = 0

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    def to_bytes(self) -> bytes:
        return self.samples.astype("<i2", copy=False).tobytes()


@dataclass
class TranscriptionEvent:
    kind: EventKind
    text: str = ""
    code: str = ""
    message: str = ""


@dataclass
class TranscriptionSession:
    """Mutable view of one live recording run.

    Committed segments are never revised. ``partial`` holds only the latest
    uncommitted hypothesis and is cleared whenever a segment is committed.
    """

    state: SessionState = SessionState.IDLE
    segments: list[str] = field(default_factory=list)
    partial: str = ""

    @property
    def text(self) -> str:
        return " ".join(self.segments)

    def apply(self, event: TranscriptionEvent) -> None:
        if event.kind == EventKind.PARTIAL:
            self.partial = event.text
        elif event.kind == EventKind.FINAL:
            self.segments.append(event.text)
            self.partial = ""
