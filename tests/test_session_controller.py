from __future__ import annotations

import io
import threading
import time
from pathlib import Path
from queue import Empty, Queue

import numpy as np
import pytest

from errors import (
    ALREADY_RECORDING,
    DECODE_FAILED,
    DEVICE_INIT_FAILED,
    MODEL_LOAD_FAILED,
    MODEL_NOT_FOUND,
    NOT_READY,
    SOURCE_OPEN_FAILED,
    TranscriptionError,
)
from models import AudioFrame, EventKind, SessionState, TranscriptionEvent
from recognizer import EngineReleasedError
from session_controller import TranscriptionService


# ---------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------

class ScriptedEngine:
    """Returns (committed, text) pairs from *script*, one per accept call."""

    def __init__(self, script: list[tuple[bool, str]] | None = None, final: str = "") -> None:
        self._script = list(script or [])
        self._final = final
        self._last = ""
        self.accepted: list[int] = []
        self.release_count = 0

    def accept(self, samples: np.ndarray) -> bool:
        self._check()
        self.accepted.append(int(samples.shape[0]))
        committed, self._last = self._script.pop(0) if self._script else (False, "")
        return committed

    def result(self) -> str:
        self._check()
        return self._last

    def partial_result(self) -> str:
        self._check()
        return self._last

    def final_result(self) -> str:
        self._check()
        return self._final

    def release(self) -> None:
        self.release_count += 1

    def _check(self) -> None:
        if self.release_count:
            raise EngineReleasedError("released")


class FakeModel:
    def __init__(self, path: str, engines: list[ScriptedEngine] | None = None) -> None:
        self.path = path
        self.engines = list(engines or [])
        self.created: list[ScriptedEngine] = []
        self.closed = False

    def create_engine(self) -> ScriptedEngine:
        engine = self.engines.pop(0) if self.engines else ScriptedEngine()
        self.created.append(engine)
        return engine

    def close(self) -> None:
        self.closed = True


class FakeModelStore:
    def __init__(self, error: TranscriptionError | None = None) -> None:
        self.error = error
        self.calls = 0

    def materialize(self) -> Path:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Path("/models/model-hi")


class FakeSource:
    def __init__(self, frames: list[AudioFrame] | None = None, fail_open: bool = False) -> None:
        self._frames: Queue[AudioFrame] = Queue()
        for frame in frames or []:
            self._frames.put(frame)
        self._fail_open = fail_open
        self.opened = False
        self.closed = False

    @property
    def active(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        if self._fail_open:
            raise TranscriptionError(DEVICE_INIT_FAILED, "no microphone")
        self.opened = True

    def read(self, timeout: float) -> AudioFrame | None:
        try:
            return self._frames.get(timeout=timeout)
        except Empty:
            return None

    def close(self) -> None:
        self.closed = True


class BlockingSource(FakeSource):
    """A read that ignores close() until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.reading = threading.Event()

    def read(self, timeout: float) -> AudioFrame | None:
        self.reading.set()
        self.gate.wait(timeout=5)
        return _frame(160)


def _frame(n_samples: int = 1600) -> AudioFrame:
    return AudioFrame(samples=np.zeros(n_samples, dtype=np.int16))


def _make_service(
    engines: list[ScriptedEngine] | None = None,
    sources: list[FakeSource] | None = None,
    store: FakeModelStore | None = None,
    stop_timeout_s: float = 1.0,
    **kwargs,  # noqa: ANN003
) -> tuple[TranscriptionService, list[FakeModel]]:
    models: list[FakeModel] = []
    pending_sources = list(sources or [])

    def loader(path: str) -> FakeModel:
        model = FakeModel(path, engines)
        models.append(model)
        return model

    def recorder_factory() -> FakeSource:
        return pending_sources.pop(0) if pending_sources else FakeSource()

    service = TranscriptionService(
        model_store=store or FakeModelStore(),
        model_loader=loader,
        recorder_factory=recorder_factory,
        stop_timeout_s=stop_timeout_s,
        read_timeout_s=0.01,
        **kwargs,
    )
    return service, models


def _ready_service(**kwargs) -> tuple[TranscriptionService, list[FakeModel]]:  # noqa: ANN003
    service, models = _make_service(**kwargs)
    service.initialize()
    assert service.wait_until_ready(timeout=2.0)
    event = service.next_event(timeout=1.0)
    assert event is not None and event.kind == EventKind.MODEL_READY
    return service, models


def _collect(service: TranscriptionService, count: int, timeout: float = 2.0) -> list[TranscriptionEvent]:
    events: list[TranscriptionEvent] = []
    deadline = time.time() + timeout
    while len(events) < count and time.time() < deadline:
        event = service.next_event(timeout=0.05)
        if event is not None:
            events.append(event)
    return events


def _drain(service: TranscriptionService) -> list[TranscriptionEvent]:
    events: list[TranscriptionEvent] = []
    while True:
        event = service.next_event(timeout=0)
        if event is None:
            return events
        events.append(event)


# ---------------------------------------------------------------
# Model lifecycle
# ---------------------------------------------------------------

def test_initialize_publishes_model_ready_once() -> None:
    store = FakeModelStore()
    service, models = _ready_service(store=store)

    service.initialize()  # second call is a no-op

    assert service.is_model_ready() is True
    assert store.calls == 1
    assert len(models) == 1
    assert models[0].path == "/models/model-hi"
    assert _drain(service) == []


def test_model_not_found_reports_single_error() -> None:
    store = FakeModelStore(error=TranscriptionError(MODEL_NOT_FOUND, "missing model-hi"))
    service, models = _make_service(store=store)

    service.initialize()

    assert service.wait_until_ready(timeout=2.0) is False
    events = _drain(service)
    assert len(events) == 1
    assert events[0].kind == EventKind.ERROR
    assert events[0].code == MODEL_NOT_FOUND
    assert events[0].message == "missing model-hi"
    assert models == []


def test_loader_exception_maps_to_model_load_failed() -> None:
    def broken_loader(path: str) -> FakeModel:
        raise RuntimeError("bad graph")

    service = TranscriptionService(model_store=FakeModelStore(), model_loader=broken_loader)
    service.initialize()

    assert service.wait_until_ready(timeout=2.0) is False
    events = _drain(service)
    assert [e.code for e in events] == ["MODEL_LOAD_FAILED"]
    assert "bad graph" in events[0].message


def test_operations_before_ready_fail_fast() -> None:
    service, _ = _make_service()

    service.start_recording()

    events = _drain(service)
    assert [(e.kind, e.code) for e in events] == [(EventKind.ERROR, NOT_READY)]
    assert service.state == SessionState.IDLE
    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe_file(lambda: io.BytesIO(b""))
    assert excinfo.value.code == NOT_READY


# ---------------------------------------------------------------
# Live recording
# ---------------------------------------------------------------

def test_events_are_delivered_in_engine_order() -> None:
    script = [
        (False, "एक"),
        (False, "एक दो"),
        (True, "एक दो तीन"),
        (False, "चार"),
        (True, "चार पांच"),
    ]
    engine = ScriptedEngine(script)
    source = FakeSource([_frame() for _ in script])
    service, _ = _ready_service(engines=[engine], sources=[source])

    service.start_recording()
    events = _collect(service, 5)
    service.stop_recording()

    assert [(e.kind, e.text) for e in events] == [
        (EventKind.PARTIAL, "एक"),
        (EventKind.PARTIAL, "एक दो"),
        (EventKind.FINAL, "एक दो तीन"),
        (EventKind.PARTIAL, "चार"),
        (EventKind.FINAL, "चार पांच"),
    ]
    assert _drain(service) == []
    assert service.session.text == "एक दो तीन चार पांच"


def test_final_replaces_partial_in_session_text() -> None:
    engine = ScriptedEngine([(False, "नमस्ते"), (True, "नमस्ते कैसे हैं")])
    source = FakeSource([_frame(), _frame()])
    service, _ = _ready_service(engines=[engine], sources=[source])

    service.start_recording()
    _collect(service, 2)
    text = service.stop_recording()

    assert text == "नमस्ते कैसे हैं"
    assert service.session.text == "नमस्ते कैसे हैं"
    assert service.session.partial == ""


def test_stop_flushes_engine_and_releases_resources() -> None:
    engine = ScriptedEngine([(False, "hello")], final="hello world")
    source = FakeSource([_frame()])
    transitions: list[tuple[SessionState, SessionState]] = []
    service, _ = _ready_service(
        engines=[engine],
        sources=[source],
        on_state_change=lambda f, t: transitions.append((f, t)),
    )

    service.start_recording()
    assert service.state == SessionState.RECORDING
    _collect(service, 1)
    text = service.stop_recording()

    assert text == "hello world"
    assert source.closed is True
    assert engine.release_count == 1
    assert service.state == SessionState.IDLE
    assert [(e.kind, e.text) for e in _drain(service)] == [(EventKind.FINAL, "hello world")]
    assert transitions == [
        (SessionState.IDLE, SessionState.RECORDING),
        (SessionState.RECORDING, SessionState.STOPPING),
        (SessionState.STOPPING, SessionState.IDLE),
    ]


def test_empty_frames_are_not_fed_to_engine() -> None:
    engine = ScriptedEngine([(False, "x")])
    source = FakeSource([_frame(0), _frame(320)])
    service, _ = _ready_service(engines=[engine], sources=[source])

    service.start_recording()
    _collect(service, 1)
    service.stop_recording()

    assert engine.accepted == [320]


def test_stop_when_idle_is_noop() -> None:
    service, _ = _ready_service()

    assert service.stop_recording() == ""
    assert service.state == SessionState.IDLE
    assert _drain(service) == []


def test_second_start_fails_and_keeps_existing_session() -> None:
    first = FakeSource()
    second = FakeSource()
    service, models = _ready_service(sources=[first, second])

    service.start_recording()
    session = service.session
    service.start_recording()

    events = _drain(service)
    assert [(e.kind, e.code) for e in events] == [(EventKind.ERROR, ALREADY_RECORDING)]
    assert service.session is session
    assert service.state == SessionState.RECORDING
    assert len(models[0].created) == 1
    assert second.opened is False

    service.stop_recording()
    assert service.state == SessionState.IDLE


def test_device_failure_reports_error_and_releases_engine() -> None:
    engine = ScriptedEngine()
    service, _ = _ready_service(engines=[engine], sources=[FakeSource(fail_open=True)])

    service.start_recording()

    events = _drain(service)
    assert [(e.kind, e.code) for e in events] == [(EventKind.ERROR, DEVICE_INIT_FAILED)]
    assert engine.release_count == 1
    assert service.state == SessionState.IDLE


def test_stop_times_out_on_blocked_read_without_touching_engine() -> None:
    engine = ScriptedEngine([(True, "late")])
    source = BlockingSource()
    service, _ = _ready_service(engines=[engine], sources=[source], stop_timeout_s=0.05)

    service.start_recording()
    assert source.reading.wait(timeout=1.0)
    service.stop_recording()

    assert service.state == SessionState.IDLE
    assert source.closed is True
    assert engine.release_count == 1

    source.gate.set()  # the stuck read finally returns a frame
    time.sleep(0.1)

    assert engine.accepted == []
    assert _drain(service) == []


def test_recording_can_restart_after_stop() -> None:
    engines = [ScriptedEngine([(True, "one")]), ScriptedEngine([(True, "two")])]
    sources = [FakeSource([_frame()]), FakeSource([_frame()])]
    service, models = _ready_service(engines=engines, sources=sources)

    service.start_recording()
    _collect(service, 1)
    assert service.stop_recording() == "one"

    service.start_recording()
    _collect(service, 1)
    assert service.stop_recording() == "two"
    assert len(models[0].created) == 2


# ---------------------------------------------------------------
# File transcription
# ---------------------------------------------------------------

def test_transcribe_empty_stream_returns_empty_string() -> None:
    service, _ = _ready_service()

    assert service.transcribe_file(lambda: io.BytesIO(b"")) == ""


def test_transcribe_one_second_of_silence() -> None:
    engine = ScriptedEngine(final="")
    service, _ = _ready_service(engines=[engine])
    silence = b"\x00\x00" * 16000

    assert service.transcribe_file(lambda: io.BytesIO(silence)) == ""
    assert sum(engine.accepted) == 16000
    assert engine.release_count == 1


def test_transcribe_joins_committed_segments() -> None:
    engine = ScriptedEngine([(True, "पहला"), (False, "ignored"), (True, "दूसरा")], final="अंत")
    service, _ = _ready_service(engines=[engine])
    pcm = b"\x01\x00" * 6000  # three 4096-byte chunks

    assert service.transcribe_file(lambda: io.BytesIO(pcm)) == "पहला दूसरा अंत"


def test_transcribe_uses_its_own_engine_while_recording() -> None:
    live_engine = ScriptedEngine()
    file_engine = ScriptedEngine(final="file text")
    service, models = _ready_service(engines=[live_engine, file_engine])

    service.start_recording()
    text = service.transcribe_file(lambda: io.BytesIO(b"\x00\x00" * 100))
    service.stop_recording()

    assert text == "file text"
    assert models[0].created == [live_engine, file_engine]
    assert live_engine.accepted == []


def test_transcribe_missing_file_raises_source_open_failed(tmp_path: Path) -> None:
    engine = ScriptedEngine()
    service, _ = _ready_service(engines=[engine])

    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe_file(tmp_path / "missing.wav")

    assert excinfo.value.code == SOURCE_OPEN_FAILED
    assert engine.release_count == 1


def test_transcribe_engine_failure_raises_decode_failed() -> None:
    class ExplodingEngine(ScriptedEngine):
        def accept(self, samples: np.ndarray) -> bool:
            raise ValueError("corrupt")

    engine = ExplodingEngine()
    service, _ = _ready_service(engines=[engine])

    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe_file(lambda: io.BytesIO(b"\x00\x00" * 10))

    assert excinfo.value.code == DECODE_FAILED
    assert engine.release_count == 1


def test_transcribe_engine_creation_failure_raises_model_load_failed() -> None:
    service, models = _ready_service()

    def broken_create_engine() -> ScriptedEngine:
        raise RuntimeError("Failed to create a recognizer")

    models[0].create_engine = broken_create_engine  # type: ignore[method-assign]

    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe_file(lambda: io.BytesIO(b""))

    assert excinfo.value.code == MODEL_LOAD_FAILED
    assert "Failed to create a recognizer" in excinfo.value.message


def test_submit_file_runs_in_background() -> None:
    service, _ = _ready_service(engines=[ScriptedEngine(final="async")])

    future = service.submit_file(lambda: io.BytesIO(b"\x00\x00" * 10))

    assert future.result(timeout=2.0) == "async"
    service.shutdown()


# ---------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------

def test_shutdown_stops_recording_and_closes_model() -> None:
    engine = ScriptedEngine()
    source = FakeSource()
    service, models = _ready_service(engines=[engine], sources=[source])
    service.start_recording()

    service.shutdown()
    service.shutdown()  # idempotent

    assert service.state == SessionState.IDLE
    assert source.closed is True
    assert engine.release_count == 1
    assert models[0].closed is True
    assert service.is_model_ready() is False


def test_operations_after_shutdown_fail_with_not_ready() -> None:
    service, _ = _ready_service()
    service.shutdown()

    service.start_recording()
    assert [e.code for e in _drain(service)] == [NOT_READY]
    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe_file(lambda: io.BytesIO(b""))
    assert excinfo.value.code == NOT_READY
    with pytest.raises(TranscriptionError):
        service.submit_file(lambda: io.BytesIO(b""))

    service.initialize()
    assert [e.code for e in _drain(service)] == [NOT_READY]
    assert service.wait_until_ready(timeout=1.0) is False


def test_initialize_after_shutdown_does_not_block_waiters() -> None:
    store = FakeModelStore()
    service, models = _make_service(store=store)
    service.shutdown()

    service.initialize()

    done = threading.Event()
    results: list[bool] = []

    def waiter() -> None:
        results.append(service.wait_until_ready())
        done.set()

    threading.Thread(target=waiter, daemon=True).start()
    assert done.wait(timeout=1.0)
    assert results == [False]
    assert [e.code for e in _drain(service)] == [NOT_READY]
    assert store.calls == 0
    assert models == []
