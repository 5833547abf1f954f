"""Frame source for uploaded audio: RIFF/WAV with a fixed header, or raw PCM.

Only the 4-byte ``RIFF`` magic is inspected. When present, exactly
``HEADER_SIZE`` bytes are skipped and the rest of the stream is taken to be
16-bit little-endian mono PCM; sub-chunk sizes are not parsed. Without the
magic the source is opened a second time and read from byte zero, since the
probe already consumed the first bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Union

import numpy as np

from errors import DECODE_FAILED, SOURCE_OPEN_FAILED, TranscriptionError
from models import SAMPLE_RATE, AudioFrame

log = logging.getLogger("vst.decoder")

RIFF_MAGIC = b"RIFF"
HEADER_SIZE = 44
CHUNK_BYTES = 4096

StreamOpener = Callable[[], BinaryIO]
AudioSourceHandle = Union[str, Path, StreamOpener]


def pcm16_to_samples(data: bytes) -> np.ndarray:
    """Little-endian int16 samples from *data*; an odd trailing byte is dropped."""
    usable = len(data) - (len(data) % 2)
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.int16)


def _as_opener(source: AudioSourceHandle) -> StreamOpener:
    if callable(source):
        return source
    path = Path(source)
    return lambda: path.open("rb")


class WavFrameDecoder:
    def __init__(self, source: AudioSourceHandle, chunk_bytes: int = CHUNK_BYTES) -> None:
        self._open = _as_opener(source)
        self._chunk_bytes = chunk_bytes
        self.is_container: bool | None = None

    def frames(self) -> Iterator[AudioFrame]:
        stream = self._open_stream()
        try:
            header = self._read(stream, HEADER_SIZE)
            self.is_container = header[: len(RIFF_MAGIC)] == RIFF_MAGIC
            if not self.is_container:
                stream.close()
                log.debug("No RIFF header, decoding source as raw PCM")
                stream = self._open_stream()
            yield from self._chunks(stream)
        finally:
            stream.close()

    def _chunks(self, stream: BinaryIO) -> Iterator[AudioFrame]:
        while True:
            data = self._read(stream, self._chunk_bytes)
            if not data:
                return
            samples = pcm16_to_samples(data)
            if samples.size:
                yield AudioFrame(samples=samples, sample_rate=SAMPLE_RATE)

    def _open_stream(self) -> BinaryIO:
        try:
            stream = self._open()
        except OSError as exc:
            raise TranscriptionError(SOURCE_OPEN_FAILED, str(exc)) from exc
        if stream is None:
            raise TranscriptionError(SOURCE_OPEN_FAILED)
        return stream

    @staticmethod
    def _read(stream: BinaryIO, size: int) -> bytes:
        try:
            return stream.read(size) or b""
        except OSError as exc:
            raise TranscriptionError(DECODE_FAILED, str(exc)) from exc
