"""Protocol interfaces used by TranscriptionService."""

from __future__ import annotations

from typing import Protocol

import numpy as np

from models import AudioFrame


class AudioFrameSource(Protocol):
    @property
    def active(self) -> bool: ...

    def open(self) -> None: ...

    def read(self, timeout: float) -> AudioFrame | None: ...

    def close(self) -> None: ...


class RecognitionEngine(Protocol):
    def accept(self, samples: np.ndarray) -> bool: ...

    def result(self) -> str: ...

    def partial_result(self) -> str: ...

    def final_result(self) -> str: ...

    def release(self) -> None: ...


class LoadedModel(Protocol):
    path: str

    def create_engine(self) -> RecognitionEngine: ...

    def close(self) -> None: ...


class TranscriptionListener(Protocol):
    def on_partial_result(self, text: str) -> None: ...

    def on_final_result(self, text: str) -> None: ...

    def on_error(self, message: str) -> None: ...

    def on_model_ready(self) -> None: ...
