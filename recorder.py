"""Microphone frame source backed by sounddevice."""

from __future__ import annotations

import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any

import numpy as np

from errors import DEVICE_INIT_FAILED, TranscriptionError
from models import SAMPLE_RATE, AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

log = logging.getLogger("vst.recorder")


class SoundDeviceRecorder:
    """Live AudioFrameSource.

    The PortAudio callback pushes int16 frames onto a bounded queue and
    ``read`` pops them. ``close`` may be called from another thread while a
    ``read`` is blocked: it stops the stream and wakes the reader with a
    sentinel, after which the recorder reports itself inactive.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        channels: int = 1,
        chunk_ms: int = 100,
        queue_maxsize: int = 50,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._queue: Queue[AudioFrame | None] = Queue(maxsize=queue_maxsize)

    @property
    def active(self) -> bool:
        return self._running

    def open(self) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise TranscriptionError(DEVICE_INIT_FAILED, "sounddevice is not installed")
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                log.error("Failed to open input stream: %s", exc, exc_info=True)
                raise TranscriptionError(DEVICE_INIT_FAILED, str(exc)) from exc
            self._running = True
            log.debug("Input stream started at %d Hz, blocksize %d", self.sample_rate, blocksize)

    def read(self, timeout: float = 0.1) -> AudioFrame | None:
        if not self._running and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except Empty:
            return None

    def close(self) -> None:
        with self._lock:
            if not self._running:
                self._emit_sentinel()
                return
            self._running = False
            stream, self._stream = self._stream, None
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except Exception as exc:
                    log.warning("Error closing input stream: %s", exc)
            self._emit_sentinel()
        if self.dropped_chunks:
            log.info("Dropped %d audio chunks while recording", self.dropped_chunks)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        samples = np.asarray(indata, dtype=np.int16)
        if self.channels > 1:
            samples = samples[:, 0]
        frame = AudioFrame(
            samples=samples.reshape(-1).copy(),
            sample_rate=self.sample_rate,
            channels=1,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            self._queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel(self) -> None:
        try:
            self._queue.put_nowait(None)
        except Full:
            pass
