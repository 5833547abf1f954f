"""Recognizer adapter over Vosk's KaldiRecognizer.

Vosk hands back JSON strings such as ``{"text": "..."}`` for committed
segments and ``{"partial": "..."}`` for the running hypothesis. Text is
pulled out with :func:`extract_text`, which treats anything unparsable as
silence.

Vosk frees native handles in ``__del__``. ``release``/``close`` drop the only
reference we hold so CPython frees the handle immediately; any later call
on the wrapper raises :class:`EngineReleasedError`.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import numpy as np

from errors import MODEL_LOAD_FAILED, TranscriptionError
from models import SAMPLE_RATE

try:
    import vosk
except Exception:  # pragma: no cover
    vosk = None  # type: ignore

log = logging.getLogger("vst.recognizer")


class EngineReleasedError(RuntimeError):
    """Raised when a released engine or closed model is used again."""


def extract_text(payload: str, field: str = "text") -> str:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        log.debug("Unparsable recognizer result %r: %s", payload, exc)
        return ""
    if not isinstance(data, dict):
        return ""
    value = data.get(field, "")
    return value.strip() if isinstance(value, str) else ""


class VoskRecognitionEngine:
    def __init__(self, recognizer: Any) -> None:
        self._recognizer = recognizer

    @property
    def released(self) -> bool:
        return self._recognizer is None

    def accept(self, samples: np.ndarray) -> bool:
        data = samples.astype("<i2", copy=False).tobytes()
        return bool(self._handle().AcceptWaveform(data))

    def result(self) -> str:
        return extract_text(self._handle().Result(), "text")

    def partial_result(self) -> str:
        return extract_text(self._handle().PartialResult(), "partial")

    def final_result(self) -> str:
        return extract_text(self._handle().FinalResult(), "text")

    def release(self) -> None:
        self._recognizer = None

    def _handle(self) -> Any:
        recognizer = self._recognizer
        if recognizer is None:
            raise EngineReleasedError("recognition engine already released")
        return recognizer


class VoskModel:
    """A loaded Vosk model. Shared read-only by every engine it creates."""

    def __init__(self, path: str, sample_rate: int = SAMPLE_RATE) -> None:
        if vosk is None:
            raise TranscriptionError(MODEL_LOAD_FAILED, "vosk is not installed")
        self.path = path
        self.sample_rate = sample_rate
        vosk.SetLogLevel(-1)
        try:
            self._model: Any = vosk.Model(path)
        except Exception as exc:
            raise TranscriptionError(MODEL_LOAD_FAILED, f"Failed to load model from {path}: {exc}") from exc
        log.info("Loaded speech model from %s", path)

    def create_engine(self) -> VoskRecognitionEngine:
        if self._model is None:
            raise EngineReleasedError("model already closed")
        return VoskRecognitionEngine(vosk.KaldiRecognizer(self._model, self.sample_rate))

    def close(self) -> None:
        if self._model is not None:
            log.debug("Closing speech model %s", self.path)
        self._model = None
