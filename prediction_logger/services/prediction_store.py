"""Append-only SQLite log of predictions."""

import os
import sqlite3
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from queue import Queue
from typing import Any, Callable, List, Optional

from .error_handler import ErrorHandler, ErrorSeverity
from .interfaces import PredictionStoreInterface
from ..config.defaults import SYSTEM_CONSTANTS
from ..exceptions import RecordValidationError, StorageUnavailable, WriteFailed
from ..logging_config import get_logger, log_performance
from ..models.prediction import ClassProbabilities, PredictedClass, PredictionRecord
from ..utils import ensure_directory_exists, get_file_size_mb

logger = get_logger("prediction_store")

SCHEMA_VERSION = 1
COMPONENT_NAME = "prediction_store"


class _Operation:
    """A unit of work for the store worker.

    ``future`` is None for fire-and-forget writes; their failures are
    reported to write-failed listeners instead.
    """

    def __init__(self, func: Callable[[], Any], future: Optional[Future] = None,
                 record: Optional[PredictionRecord] = None):
        self.func = func
        self.future = future
        self.record = record


_STOP = object()


class PredictionStore(PredictionStoreInterface):
    """Persistent prediction log.

    One worker thread owns the SQLite connection and runs every operation
    in the order it was issued. ``add`` returns once the write is queued;
    ``list_all`` and ``clear_all`` wait for their turn. A ``clear_all``
    therefore removes every record added before it and none added after.
    """

    def __init__(self, database_path: str = "data/predictions.db",
                 error_handler: Optional[ErrorHandler] = None,
                 request_timeout: float = SYSTEM_CONSTANTS["STORE_REQUEST_TIMEOUT_SECONDS"]):
        self.database_path = database_path
        self.request_timeout = request_timeout
        self.error_handler = error_handler or ErrorHandler()
        self.error_handler.register_component(COMPONENT_NAME)

        self._queue: "Queue[Any]" = Queue()
        self._worker: Optional[threading.Thread] = None
        self._connection: Optional[sqlite3.Connection] = None
        self._open_lock = threading.Lock()
        self._opened = False
        self._write_failed_listeners: List[Callable[[WriteFailed], None]] = []

        self.records_written = 0
        self.write_failures = 0
        self.skipped_rows = 0

    @property
    def is_open(self) -> bool:
        return self._opened

    def add_write_failed_listener(self, listener: Callable[[WriteFailed], None]) -> None:
        """Call ``listener`` with a WriteFailed whenever a queued write fails."""
        if listener not in self._write_failed_listeners:
            self._write_failed_listeners.append(listener)

    def open(self) -> None:
        """Open (creating on first use) the database. Idempotent."""
        with self._open_lock:
            if self._opened:
                return

            self._worker = threading.Thread(target=self._run_worker, name="prediction-store",
                                            daemon=True)
            self._worker.start()

            try:
                self._submit(self._connect)
            except StorageUnavailable:
                self._queue.put(_STOP)
                self._worker.join(timeout=SYSTEM_CONSTANTS["THREAD_JOIN_TIMEOUT_SECONDS"])
                self._worker = None
                raise

            self._opened = True
            logger.info(f"Prediction store opened at {self.database_path}")

    def close(self) -> None:
        """Drain queued operations and close the database."""
        with self._open_lock:
            if not self._opened:
                return
            self._queue.put(_STOP)
            if self._worker and self._worker.is_alive():
                self._worker.join(timeout=self.request_timeout)
            self._worker = None
            self._opened = False
            logger.info("Prediction store closed")

    def add(self, record: PredictionRecord) -> None:
        self.open()
        self._queue.put(_Operation(lambda: self._insert(record), record=record))

    def list_all(self) -> List[PredictionRecord]:
        self.open()
        return self._submit(self._select_all)

    def clear_all(self) -> int:
        self.open()
        cleared = self._submit(self._delete_all)
        logger.info(f"Cleared {cleared} prediction record(s)")
        return cleared

    def count(self) -> int:
        self.open()
        return self._submit(self._count)

    def flush(self) -> None:
        """Wait until every previously queued write has been attempted."""
        self.open()
        self._submit(lambda: None)

    def _submit(self, func: Callable[[], Any]) -> Any:
        future: Future = Future()
        self._queue.put(_Operation(func, future=future))
        try:
            return future.result(timeout=self.request_timeout)
        except sqlite3.Error as e:
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.HIGH)
            raise StorageUnavailable(f"Prediction store request failed: {e}") from e
        except FutureTimeoutError as e:
            raise StorageUnavailable("Prediction store did not respond in time") from e

    def _run_worker(self) -> None:
        """Worker thread: run queued operations one at a time."""
        try:
            while True:
                operation = self._queue.get()
                try:
                    if operation is _STOP:
                        break
                    self._execute(operation)
                finally:
                    self._queue.task_done()
        finally:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _execute(self, operation: _Operation) -> None:
        try:
            result = operation.func()
        except Exception as e:
            if operation.future is not None:
                operation.future.set_exception(e)
            else:
                self._report_write_failure(operation.record, e)
            return
        if operation.future is not None:
            operation.future.set_result(result)

    def _report_write_failure(self, record: PredictionRecord, cause: Exception) -> None:
        self.write_failures += 1
        failure = WriteFailed(record, cause)
        logger.error(f"Error saving prediction: {cause}")
        self.error_handler.handle_error(COMPONENT_NAME, failure, ErrorSeverity.HIGH)
        for listener in list(self._write_failed_listeners):
            try:
                listener(failure)
            except Exception as e:
                logger.error(f"Write-failed listener raised: {e}")

    def _connect(self) -> None:
        try:
            ensure_directory_exists(os.path.dirname(self.database_path))
            connection = sqlite3.connect(self.database_path)
            connection.execute("""
                CREATE TABLE IF NOT EXISTS predictions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    time TEXT NOT NULL,
                    predicted_class TEXT NOT NULL,
                    class1_probability REAL,
                    class2_probability REAL
                )
            """)
            connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            connection.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to open prediction store {self.database_path}: {e}")
            self.error_handler.handle_error(COMPONENT_NAME, e, ErrorSeverity.CRITICAL)
            raise StorageUnavailable(f"Cannot open prediction store {self.database_path}: {e}") from e
        self._connection = connection

    def _insert(self, record: PredictionRecord) -> None:
        start_time = time.time()
        probabilities = record.probabilities
        with self._connection:
            self._connection.execute(
                "INSERT INTO predictions (time, predicted_class, class1_probability, class2_probability) "
                "VALUES (?, ?, ?, ?)",
                (
                    record.timestamp,
                    record.predicted_class.value,
                    probabilities.class1_probability if probabilities else None,
                    probabilities.class2_probability if probabilities else None
                )
            )
        self.records_written += 1
        logger.debug("Prediction saved")
        log_performance("Prediction saved", {"write_ms": round((time.time() - start_time) * 1000, 2)})

    def _select_all(self) -> List[PredictionRecord]:
        cursor = self._connection.execute(
            "SELECT id, time, predicted_class, class1_probability, class2_probability "
            "FROM predictions ORDER BY id ASC"
        )
        records = []
        for row in cursor.fetchall():
            record = self._row_to_record(row)
            if record is not None:
                records.append(record)
        return records

    def _row_to_record(self, row) -> Optional[PredictionRecord]:
        row_id, timestamp, predicted_class, class1, class2 = row
        try:
            probabilities = None
            if class1 is not None or class2 is not None:
                probabilities = ClassProbabilities(class1, class2)
            return PredictionRecord(
                timestamp=timestamp,
                predicted_class=PredictedClass(predicted_class),
                probabilities=probabilities
            )
        except (RecordValidationError, ValueError) as e:
            self.skipped_rows += 1
            logger.warning(f"Skipping malformed prediction row {row_id}: {e}")
            return None

    def _delete_all(self) -> int:
        with self._connection:
            cursor = self._connection.execute("DELETE FROM predictions")
        return cursor.rowcount

    def _count(self) -> int:
        return self._connection.execute("SELECT COUNT(*) FROM predictions").fetchone()[0]

    def get_storage_info(self) -> dict:
        """Get storage service information."""
        return {
            "database_path": self.database_path,
            "open": self._opened,
            "database_exists": os.path.exists(self.database_path),
            "database_size_mb": get_file_size_mb(self.database_path),
            "schema_version": SCHEMA_VERSION,
            "records_written": self.records_written,
            "write_failures": self.write_failures,
            "skipped_rows": self.skipped_rows,
            "pending_operations": self._queue.qsize()
        }
