"""State-machine based transcription service.

One service owns one speech model. Live recording runs a single worker
thread that pulls frames from the capture device into its own recognition
engine; file transcription creates a separate engine per call. Every
outcome is published as a :class:`TranscriptionEvent` on ``events``, a FIFO
queue drained by a single consumer.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from queue import Empty, Queue
from typing import Callable, Iterable, Optional

from config import ServiceSettings
from errors import (
    ALREADY_RECORDING,
    DECODE_FAILED,
    DEVICE_INIT_FAILED,
    ERROR_MESSAGES,
    MODEL_LOAD_FAILED,
    NOT_READY,
    TranscriptionError,
)
from interfaces import AudioFrameSource, LoadedModel, RecognitionEngine
from model_store import ModelStore
from models import AudioFrame, EventKind, SessionState, TranscriptionEvent, TranscriptionSession
from recognizer import VoskModel
from recorder import SoundDeviceRecorder
from wav_decoder import CHUNK_BYTES, AudioSourceHandle, WavFrameDecoder

log = logging.getLogger("vst.service")

StateCallback = Callable[[SessionState, SessionState], None]
ModelLoader = Callable[[str], LoadedModel]
RecorderFactory = Callable[[], AudioFrameSource]


def transcribe_frames(frames: Iterable[AudioFrame], engine: RecognitionEngine) -> str:
    """Feed *frames* through *engine* and return every committed segment, space-joined."""
    parts: list[str] = []
    for frame in frames:
        if engine.accept(frame.samples):
            text = engine.result()
            if text:
                parts.append(text)
                log.debug("Intermediate result: %s", text)
    text = engine.final_result()
    if text:
        parts.append(text)
    return " ".join(parts).strip()


@dataclass
class _LiveRun:
    session: TranscriptionSession
    source: AudioFrameSource
    engine: RecognitionEngine
    stop_event: threading.Event = field(default_factory=threading.Event)
    engine_lock: threading.Lock = field(default_factory=threading.Lock)
    thread: Optional[threading.Thread] = None


class TranscriptionService:
    def __init__(
        self,
        model_store: ModelStore,
        model_loader: ModelLoader = VoskModel,
        recorder_factory: RecorderFactory = SoundDeviceRecorder,
        stop_timeout_s: float = 1.0,
        read_timeout_s: float = 0.1,
        chunk_bytes: int = CHUNK_BYTES,
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self._model_store = model_store
        self._model_loader = model_loader
        self._recorder_factory = recorder_factory
        self._stop_timeout_s = stop_timeout_s
        self._read_timeout_s = read_timeout_s
        self._chunk_bytes = chunk_bytes
        self._on_state_change = on_state_change

        self.events: Queue[TranscriptionEvent] = Queue()

        self._lock = threading.RLock()
        self._model: Optional[LoadedModel] = None
        self._loader_thread: Optional[threading.Thread] = None
        self._load_done = threading.Event()
        self._shut_down = False
        self._session = TranscriptionSession()
        self._live: Optional[_LiveRun] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_settings(cls, settings: ServiceSettings, **kwargs) -> "TranscriptionService":  # noqa: ANN003
        store = ModelStore(settings.assets_dir, settings.models_dir, settings.model_name)
        return cls(
            store,
            stop_timeout_s=settings.stop_timeout_s,
            chunk_bytes=settings.chunk_bytes,
            **kwargs,
        )

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> TranscriptionSession:
        """The running session, or the most recently finished one."""
        return self._session

    def is_model_ready(self) -> bool:
        with self._lock:
            return self._model is not None and not self._shut_down

    def next_event(self, timeout: Optional[float] = None) -> Optional[TranscriptionEvent]:
        try:
            return self.events.get(timeout=timeout)
        except Empty:
            return None

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        with self._lock:
            if self._shut_down:
                self._publish_error(NOT_READY)
                return
            if self._loader_thread is not None:
                return
            self._loader_thread = threading.Thread(
                target=self._load_model, name="vst-model-loader", daemon=True
            )
            self._loader_thread.start()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        self._load_done.wait(timeout=timeout)
        return self.is_model_ready()

    def _load_model(self) -> None:
        try:
            try:
                path = self._model_store.materialize()
                log.info("Loading model from %s", path)
                model = self._model_loader(str(path))
            except TranscriptionError as exc:
                log.error("Model initialization failed: %s", exc.message)
                self._publish_error(exc.code, exc.message)
                return
            except Exception as exc:
                log.error("Model initialization failed: %s", exc, exc_info=True)
                self._publish_error(MODEL_LOAD_FAILED, f"Failed to load model: {exc}")
                return

            with self._lock:
                if self._shut_down:
                    model.close()
                    return
                self._model = model
                self._publish(TranscriptionEvent(kind=EventKind.MODEL_READY))
            log.info("Model initialized successfully")
        finally:
            self._load_done.set()

    # ------------------------------------------------------------------
    # Live recording
    # ------------------------------------------------------------------

    def start_recording(self) -> None:
        with self._lock:
            if self._model is None or self._shut_down:
                self._publish_error(NOT_READY)
                return
            if self._session.state != SessionState.IDLE:
                self._publish_error(ALREADY_RECORDING)
                return

            try:
                engine = self._model.create_engine()
            except Exception as exc:
                log.error("Could not create recognition engine: %s", exc, exc_info=True)
                self._publish_error(MODEL_LOAD_FAILED, str(exc))
                return
            try:
                source = self._recorder_factory()
                source.open()
            except TranscriptionError as exc:
                engine.release()
                self._publish_error(exc.code, exc.message)
                return
            except Exception as exc:
                engine.release()
                log.error("Audio device init failed: %s", exc, exc_info=True)
                self._publish_error(DEVICE_INIT_FAILED, f"{ERROR_MESSAGES[DEVICE_INIT_FAILED]} ({exc})")
                return

            run = _LiveRun(session=TranscriptionSession(), source=source, engine=engine)
            run.thread = threading.Thread(
                target=self._run_worker, args=(run,), name="vst-recognition", daemon=True
            )
            self._session = run.session
            self._live = run
            self._transition(SessionState.RECORDING)
            run.thread.start()

    def stop_recording(self) -> str:
        """Stop the live session and return its committed text.

        The worker gets ``stop_timeout_s`` to leave its read loop. If it is
        still blocked after that, the capture device is closed anyway; the
        worker then finds the stop flag set under the engine lock and never
        touches the engine again, so a late frame is dropped rather than fed
        into an engine that has been flushed or released.
        """
        with self._lock:
            run = self._live
            if run is None or self._session.state != SessionState.RECORDING:
                return ""
            self._transition(SessionState.STOPPING)
            run.stop_event.set()

        if run.thread is not None:
            run.thread.join(timeout=self._stop_timeout_s)
            if run.thread.is_alive():
                log.warning(
                    "Recognition worker still running after %.1fs, releasing capture device anyway",
                    self._stop_timeout_s,
                )

        try:
            run.source.close()
        except Exception as exc:
            log.warning("Error releasing capture device: %s", exc)

        with run.engine_lock:
            try:
                self._emit_text(run.session, EventKind.FINAL, run.engine.final_result())
            except Exception as exc:
                log.error("Final flush failed: %s", exc, exc_info=True)
                self._publish_error(DECODE_FAILED, str(exc))
            finally:
                run.engine.release()

        with self._lock:
            self._live = None
            self._transition(SessionState.IDLE)
        log.info("Recording stopped: %s", run.session.text)
        return run.session.text

    def _run_worker(self, run: _LiveRun) -> None:
        try:
            while not run.stop_event.is_set() and run.source.active:
                frame = run.source.read(self._read_timeout_s)
                if frame is None or frame.num_samples <= 0:
                    continue
                with run.engine_lock:
                    if run.stop_event.is_set():
                        break
                    if run.engine.accept(frame.samples):
                        self._emit_text(run.session, EventKind.FINAL, run.engine.result())
                    else:
                        self._emit_text(run.session, EventKind.PARTIAL, run.engine.partial_result())
        except Exception as exc:
            log.error("Recognition worker failed: %s", exc, exc_info=True)
            self._publish_error(DECODE_FAILED, str(exc))
        log.debug("Recognition worker exited")

    # ------------------------------------------------------------------
    # File transcription
    # ------------------------------------------------------------------

    def transcribe_file(self, source: AudioSourceHandle) -> str:
        with self._lock:
            model = self._model
            if model is None or self._shut_down:
                raise TranscriptionError(NOT_READY)
            try:
                engine = model.create_engine()
            except Exception as exc:
                log.error("Could not create recognition engine: %s", exc, exc_info=True)
                raise TranscriptionError(MODEL_LOAD_FAILED, str(exc)) from exc

        log.info("Starting transcription of %s", source)
        try:
            text = transcribe_frames(WavFrameDecoder(source, self._chunk_bytes).frames(), engine)
        except TranscriptionError:
            raise
        except Exception as exc:
            log.error("Error transcribing audio file: %s", exc, exc_info=True)
            raise TranscriptionError(DECODE_FAILED, f"Failed to transcribe audio: {exc}") from exc
        finally:
            engine.release()
        log.info("Complete transcription: %s", text)
        return text

    def submit_file(self, source: AudioSourceHandle) -> Future[str]:
        with self._lock:
            if self._shut_down:
                raise TranscriptionError(NOT_READY)
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vst-file")
            return self._executor.submit(self.transcribe_file, source)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
        self._load_done.set()

        self.stop_recording()

        with self._lock:
            executor, self._executor = self._executor, None
            model, self._model = self._model, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        if model is not None:
            model.close()
        log.info("Transcription service shut down")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _emit_text(self, session: TranscriptionSession, kind: EventKind, text: str) -> None:
        if not text:
            return
        event = TranscriptionEvent(kind=kind, text=text)
        with self._lock:
            session.apply(event)
            self._publish(event)

    def _publish_error(self, code: str, message: str = "") -> None:
        message = message or ERROR_MESSAGES.get(code, code)
        log.warning("%s: %s", code, message)
        self._publish(TranscriptionEvent(kind=EventKind.ERROR, code=code, message=message))

    def _publish(self, event: TranscriptionEvent) -> None:
        self.events.put(event)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._session.state
        if from_state == to_state:
            return
        self._session.state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
