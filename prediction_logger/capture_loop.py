"""Capture loop: periodic frame pull, classification and persistence."""

import threading
import time
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from .config.defaults import CAPTURE_SETTINGS, SYSTEM_CONSTANTS
from .exceptions import (
    DeviceUnavailable, InferenceError, ModelLoadError, NoDeviceSelected,
    NoFrameYet, PermissionDenied, StorageUnavailable, WriteFailed
)
from .logging_config import get_logger
from .models.config import AppConfig
from .models.prediction import PredictionRecord
from .services.classifier import Classifier
from .services.error_handler import ErrorHandler, ErrorRecord, ErrorSeverity
from .services.frame_source import FrameSource
from .services.interfaces import ClassifierInterface, FrameSourceInterface, PredictionStoreInterface
from .services.prediction_store import PredictionStore

logger = get_logger("capture_loop")

COMPONENT_NAME = "capture_loop"


class CaptureState(Enum):
    """Capture loop states."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class PeriodicTimer:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "capture-timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=SYSTEM_CONSTANTS["THREAD_JOIN_TIMEOUT_SECONDS"])

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Timer callback failed: {e}", exc_info=True)


@dataclass
class CaptureSession:
    """State of one start-to-stop capture run. Owned by a single CaptureLoop."""
    device_selection: str
    active: bool = False
    timer_handle: Optional[PeriodicTimer] = None
    persistence_available: bool = True
    started_at: datetime = field(default_factory=datetime.now)
    tick_count: int = 0
    skipped_ticks: int = 0
    empty_ticks: int = 0
    records_queued: int = 0
    records_discarded: int = 0
    inference_errors: int = 0
    write_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "device": self.device_selection,
            "active": self.active,
            "persistence_available": self.persistence_available,
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": (datetime.now() - self.started_at).total_seconds(),
            "tick_count": self.tick_count,
            "skipped_ticks": self.skipped_ticks,
            "empty_ticks": self.empty_ticks,
            "records_queued": self.records_queued,
            "records_discarded": self.records_discarded,
            "inference_errors": self.inference_errors,
            "write_failures": self.write_failures
        }


class CaptureLoop:
    """Orchestrates periodic capture -> classify -> persist.

    ``toggle()`` is the single start/stop control. While running, a timer
    fires every ``poll_interval`` seconds; a tick is skipped entirely while a
    previous tick's classification and persistence are still outstanding, so
    at most one inference is ever in flight. Stopping cancels the timer before
    returning; an in-flight tick is left to finish and its record is kept.
    """

    def __init__(self,
                 frame_source: FrameSourceInterface,
                 classifier: ClassifierInterface,
                 store: PredictionStoreInterface,
                 poll_interval: float = 2.0,
                 persist_probabilities: bool = True,
                 inference_timeout: float = 30.0,
                 error_handler: Optional[ErrorHandler] = None):
        self.frame_source = frame_source
        self.classifier = classifier
        self.store = store
        self.poll_interval = poll_interval
        self.persist_probabilities = persist_probabilities
        self.inference_timeout = inference_timeout
        self.error_handler = error_handler or ErrorHandler()
        self.error_handler.register_component(COMPONENT_NAME)

        self._state = CaptureState.IDLE
        self._session: Optional[CaptureSession] = None
        self._toggle_lock = threading.Lock()
        self._lock = threading.Lock()
        self._busy = threading.Lock()
        self._inflight_since: Optional[float] = None
        self._stall_reported = False
        self._worker: Optional[threading.Thread] = None
        # Queued records, mapped to the session that produced them
        self._record_sessions: "weakref.WeakKeyDictionary[PredictionRecord, CaptureSession]" = \
            weakref.WeakKeyDictionary()

        self._prediction_listeners: List[Callable[[PredictionRecord], None]] = []
        self.last_error: Optional[Exception] = None
        self.last_record: Optional[PredictionRecord] = None

        if hasattr(store, 'add_write_failed_listener'):
            store.add_write_failed_listener(self._on_write_failed)
        if hasattr(frame_source, 'add_device_lost_listener'):
            frame_source.add_device_lost_listener(self._on_device_lost)

        logger.info("Capture loop initialized", extra={
            'context': {'poll_interval_s': poll_interval, 'persist_probabilities': persist_probabilities}
        })

    @classmethod
    def from_config(cls, config: AppConfig, error_handler: Optional[ErrorHandler] = None,
                    predict_fn=None) -> 'CaptureLoop':
        """Build the loop and its services from an AppConfig."""
        error_handler = error_handler or ErrorHandler()
        frame_source = FrameSource(resolution=(config.frame_width, config.frame_height))
        classifier = Classifier(
            model_source=config.model_url or config.model_path,
            input_size=config.input_size,
            models_dir=config.models_dir,
            predict_fn=predict_fn
        )
        store = PredictionStore(config.database_path, error_handler=error_handler)
        return cls(
            frame_source, classifier, store,
            poll_interval=config.poll_interval_seconds,
            persist_probabilities=config.persist_probabilities,
            inference_timeout=config.inference_timeout_seconds,
            error_handler=error_handler
        )

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == CaptureState.RUNNING

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def button_label(self) -> str:
        return CAPTURE_SETTINGS["stop_label"] if self.is_running else CAPTURE_SETTINGS["start_label"]

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    def add_prediction_listener(self, listener: Callable[[PredictionRecord], None]) -> None:
        """Call ``listener`` with every record produced by a tick."""
        if listener not in self._prediction_listeners:
            self._prediction_listeners.append(listener)

    def add_error_listener(self, listener: Callable[[ErrorRecord], None]) -> None:
        """Call ``listener`` with every error the loop or its store reports."""
        self.error_handler.add_listener(listener)

    def toggle(self) -> CaptureState:
        """Start capture when idle, stop it when running.

        Raises NoDeviceSelected, ModelLoadError, PermissionDenied or
        DeviceUnavailable when capture cannot start; the loop is then left
        without a session.
        """
        with self._toggle_lock:
            if self._state == CaptureState.RUNNING:
                self._stop()
            else:
                self._start()
            return self._state

    def stop(self) -> None:
        """Stop capture if it is running."""
        with self._toggle_lock:
            if self._state == CaptureState.RUNNING:
                self._stop()

    def _start(self) -> None:
        device = self.frame_source.selected_device
        if not device:
            self._state = CaptureState.IDLE
            raise NoDeviceSelected("Please select a camera device.")

        if not self.classifier.is_loaded:
            self._state = CaptureState.IDLE
            raise ModelLoadError("The classification model has not been loaded")

        self._state = CaptureState.STARTING
        self._discard_session()
        session = CaptureSession(device_selection=device)
        session.persistence_available = self._open_store()

        try:
            self.frame_source.start()
        except (PermissionDenied, DeviceUnavailable) as e:
            self._state = CaptureState.ERROR
            self.last_error = e
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.HIGH)
            logger.error(f"Unable to start capture on device {device}: {e}")
            raise

        timer = PeriodicTimer(self.poll_interval, lambda: self._on_tick(session, timer))
        with self._lock:
            session.timer_handle = timer
            session.active = True
            self._session = session
            self._state = CaptureState.RUNNING
        self._stall_reported = False
        timer.start()

        logger.info(f"Capture running on device {device}, polling every {self.poll_interval}s")

    def _open_store(self) -> bool:
        """Open the store; a failure is reported once for the session."""
        try:
            self.store.open()
            return True
        except StorageUnavailable as e:
            self.last_error = e
            logger.warning(f"Predictions will not be saved this session: {e}")
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.HIGH)
            return False

    def _stop(self) -> None:
        self._state = CaptureState.STOPPING
        self._discard_session()
        try:
            self.frame_source.stop()
        finally:
            self._state = CaptureState.IDLE
        logger.info("Capture stopped")

    def _discard_session(self) -> None:
        """Deactivate the current session and cancel its timer."""
        with self._lock:
            session = self._session
            timer = None
            if session is not None:
                session.active = False
                timer, session.timer_handle = session.timer_handle, None
        if timer is not None:
            timer.cancel()

    def _on_tick(self, session: CaptureSession, timer: PeriodicTimer) -> None:
        """Timer callback. Starts at most one tick worker at a time."""
        with self._lock:
            if not session.active or session.timer_handle is not timer:
                return
            session.tick_count += 1

            if not self._busy.acquire(blocking=False):
                session.skipped_ticks += 1
                logger.debug("Previous tick still in flight; skipping")
                self._check_stall()
                return

            self._inflight_since = time.monotonic()
            self._stall_reported = False
            worker = threading.Thread(target=self._run_tick, args=(session,),
                                      name="capture-tick", daemon=True)
            self._worker = worker
        worker.start()

    def _check_stall(self) -> None:
        if not self.inference_timeout or self._inflight_since is None or self._stall_reported:
            return
        stalled_for = time.monotonic() - self._inflight_since
        if stalled_for > self.inference_timeout:
            self._stall_reported = True
            error = InferenceError(f"Inference has been running for {stalled_for:.1f}s")
            logger.warning(str(error))
            self.error_handler.handle_error(COMPONENT_NAME, error, ErrorSeverity.MEDIUM)

    def _run_tick(self, session: CaptureSession) -> None:
        """Pull a frame, classify it and queue the record. Never raises."""
        try:
            try:
                frame = self.frame_source.current_frame()
            except NoFrameYet:
                session.empty_ticks += 1
                logger.debug("No frame yet; skipping tick")
                return

            try:
                probabilities = self.classifier.classify(frame)
            except InferenceError as e:
                session.inference_errors += 1
                logger.warning(f"Error processing prediction: {e}")
                self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.LOW)
                return

            record = PredictionRecord.create(probabilities, self.persist_probabilities)
            self.last_record = record
            self._persist(session, record)

            for listener in list(self._prediction_listeners):
                try:
                    listener(record)
                except Exception as e:
                    logger.error(f"Prediction listener failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in capture tick: {e}", exc_info=True)
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.MEDIUM)
        finally:
            self._inflight_since = None
            self._busy.release()

    def _persist(self, session: CaptureSession, record: PredictionRecord) -> None:
        if not session.persistence_available:
            session.records_discarded += 1
            return
        try:
            with self._lock:
                self._record_sessions[record] = session
            self.store.add(record)
            session.records_queued += 1
        except StorageUnavailable as e:
            session.records_discarded += 1
            session.persistence_available = False
            logger.warning(f"Predictions will not be saved this session: {e}")
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.HIGH)

    def _on_write_failed(self, failure: WriteFailed) -> None:
        with self._lock:
            session = self._record_sessions.pop(failure.record, None)
        if session is not None:
            session.write_failures += 1

    def _on_device_lost(self, error: Exception) -> None:
        """Frame source gave up on the device: tear the session down."""
        with self._lock:
            if self._state != CaptureState.RUNNING:
                return
            self._state = CaptureState.ERROR
        self._discard_session()
        self.last_error = error
        self.error_handler.handle_error(COMPONENT_NAME, error, ErrorSeverity.HIGH)
        logger.error(f"Capture stopped after device failure: {error}")

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for an in-flight tick to finish. Returns False on timeout."""
        acquired = self._busy.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._busy.release()
        return acquired

    def get_status(self) -> dict:
        """Get current loop status and statistics."""
        session = self._session
        status = {
            "state": self._state.value,
            "running": self.is_running,
            "button_label": self.button_label,
            "busy": self.is_busy,
            "poll_interval_seconds": self.poll_interval,
            "selected_device": self.frame_source.selected_device,
            "session": session.to_dict() if session else None,
            "last_error": str(self.last_error) if self.last_error else None,
            "last_record": self.last_record.to_dict() if self.last_record else None,
            "errors": self.error_handler.get_error_stats(),
            "services": {}
        }
        for name, service, method in (
            ("frame_source", self.frame_source, "get_source_info"),
            ("classifier", self.classifier, "get_model_info"),
            ("prediction_store", self.store, "get_storage_info"),
        ):
            if hasattr(service, method):
                status["services"][name] = getattr(service, method)()
        return status
