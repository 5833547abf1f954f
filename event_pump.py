"""Relays queued transcription events to a callback-style listener."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Optional

from interfaces import TranscriptionListener
from models import EventKind, TranscriptionEvent

log = logging.getLogger("vst.events")


def dispatch(event: TranscriptionEvent, listener: TranscriptionListener) -> None:
    if event.kind == EventKind.PARTIAL:
        listener.on_partial_result(event.text)
    elif event.kind == EventKind.FINAL:
        listener.on_final_result(event.text)
    elif event.kind == EventKind.ERROR:
        listener.on_error(event.message)
    elif event.kind == EventKind.MODEL_READY:
        listener.on_model_ready()


class EventPump:
    """Drains an event queue on its own thread, in order, until stopped."""

    def __init__(
        self,
        events: Queue[TranscriptionEvent],
        listener: TranscriptionListener,
        poll_interval_s: float = 0.2,
    ) -> None:
        self._events = events
        self._listener = listener
        self._poll_interval_s = poll_interval_s
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="vst-events", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        """Deliver whatever is already queued, then stop the pump thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _worker(self) -> None:
        while True:
            try:
                event = self._events.get(timeout=self._poll_interval_s)
            except Empty:
                if self._stop_event.is_set():
                    return
                continue
            try:
                dispatch(event, self._listener)
            except Exception as exc:
                log.error("Listener failed on %s event: %s", event.kind.value, exc, exc_info=True)
