"""Shared error codes and user-facing messages."""

from __future__ import annotations

MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
NOT_READY = "NOT_READY"
ALREADY_RECORDING = "ALREADY_RECORDING"
DEVICE_INIT_FAILED = "DEVICE_INIT_FAILED"
SOURCE_OPEN_FAILED = "SOURCE_OPEN_FAILED"
DECODE_FAILED = "DECODE_FAILED"

MODEL_DOWNLOAD_URL = "https://alphacephei.com/vosk/models"

ERROR_MESSAGES = {
    MODEL_NOT_FOUND: f"Speech model not found. Download one from {MODEL_DOWNLOAD_URL}.",
    MODEL_LOAD_FAILED: "Speech model could not be loaded.",
    NOT_READY: "Recognizer not initialized. Please wait for the model to load.",
    ALREADY_RECORDING: "A recording session is already running.",
    DEVICE_INIT_FAILED: "Failed to open the audio input device. Check microphone permissions.",
    SOURCE_OPEN_FAILED: "Cannot open audio file.",
    DECODE_FAILED: "Failed to transcribe audio.",
}


class TranscriptionError(Exception):
    """Raised with one of the codes above when an operation cannot complete."""

    def __init__(self, code: str, message: str = "") -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, code)
        super().__init__(self.message)
