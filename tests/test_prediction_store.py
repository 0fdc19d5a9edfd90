"""Unit tests for the SQLite prediction store."""

import os
import shutil
import sqlite3
import sys
import tempfile
import threading
import unittest
from unittest.mock import patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from prediction_logger.exceptions import StorageUnavailable, WriteFailed
from prediction_logger.models.prediction import ClassProbabilities, PredictedClass, PredictionRecord
from prediction_logger.services.error_handler import ComponentStatus, ErrorHandler
from prediction_logger.services.prediction_store import SCHEMA_VERSION, PredictionStore


def make_record(second, class1=0.8, class2=0.2, with_probabilities=True):
    probabilities = ClassProbabilities(class1, class2) if with_probabilities else None
    predicted = PredictedClass.CLASS_1 if class1 > class2 else PredictedClass.CLASS_2
    return PredictionRecord(f"2026-03-01T12:00:{second:02d}.000Z", predicted, probabilities)


class TestPredictionStore(unittest.TestCase):
    """Test cases for PredictionStore."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.test_dir, "data", "predictions.db")
        self.error_handler = ErrorHandler()
        self.store = PredictionStore(self.db_path, error_handler=self.error_handler)

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_open_creates_database(self):
        self.store.open()
        self.store.open()

        self.assertTrue(self.store.is_open)
        self.assertTrue(os.path.exists(self.db_path))
        with sqlite3.connect(self.db_path) as conn:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
        self.assertEqual(version, SCHEMA_VERSION)

    def test_add_then_list(self):
        record = make_record(1)
        self.store.add(record)

        self.assertEqual(self.store.list_all(), [record])
        self.assertEqual(self.store.records_written, 1)

    def test_list_preserves_insertion_order(self):
        records = [make_record(3, 0.1, 0.9), make_record(1), make_record(2, 0.5, 0.5)]
        for record in records:
            self.store.add(record)

        self.assertEqual(self.store.list_all(), records)

    def test_record_without_probabilities(self):
        record = make_record(4, with_probabilities=False)
        self.store.add(record)

        stored = self.store.list_all()
        self.assertEqual(stored, [record])
        self.assertIsNone(stored[0].probabilities)

    def test_empty_store(self):
        self.assertEqual(self.store.list_all(), [])
        self.assertEqual(self.store.count(), 0)

    def test_clear_all(self):
        for second in range(5):
            self.store.add(make_record(second))

        cleared = self.store.clear_all()

        self.assertEqual(cleared, 5)
        self.assertEqual(self.store.list_all(), [])

    def test_clear_orders_against_adds(self):
        before = make_record(1)
        after = make_record(2)

        self.store.add(before)
        self.store.clear_all()
        self.store.add(after)

        self.assertEqual(self.store.list_all(), [after])

    def test_concurrent_adds_all_persist(self):
        def writer(offset):
            for i in range(10):
                self.store.add(make_record((offset + i) % 60))

        self.store.open()
        threads = [threading.Thread(target=writer, args=(n * 10,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(self.store.count(), 40)

    def test_data_survives_reopen(self):
        record = make_record(7)
        self.store.add(record)
        self.store.close()

        reopened = PredictionStore(self.db_path)
        try:
            self.assertEqual(reopened.list_all(), [record])
        finally:
            reopened.close()

    def test_malformed_rows_are_skipped(self):
        good = make_record(1)
        self.store.add(good)
        self.store.flush()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("INSERT INTO predictions (time, predicted_class, class1_probability, "
                         "class2_probability) VALUES ('2026-03-01T12:00:02.000Z', 'Class 3', 0.1, 0.9)")
            conn.execute("INSERT INTO predictions (time, predicted_class, class1_probability, "
                         "class2_probability) VALUES ('2026-03-01T12:00:03.000Z', 'Class 1', 4.0, 0.9)")

        self.assertEqual(self.store.list_all(), [good])
        self.assertEqual(self.store.skipped_rows, 2)

    def test_write_failure_reported_to_listeners(self):
        failures = []
        self.store.add_write_failed_listener(failures.append)
        self.store.open()
        record = make_record(1)

        with patch.object(self.store, '_insert', side_effect=sqlite3.OperationalError("disk I/O error")):
            self.store.add(record)
            self.store.flush()

        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], WriteFailed)
        self.assertIs(failures[0].record, record)
        self.assertIsInstance(failures[0].cause, sqlite3.OperationalError)
        self.assertEqual(self.store.write_failures, 1)
        self.assertEqual(self.error_handler.get_component_health()["prediction_store"],
                         ComponentStatus.DEGRADED)

        # The store keeps working after a failed write
        self.store.add(make_record(2))
        self.assertEqual(len(self.store.list_all()), 1)

    def test_unopenable_database(self):
        blocker = os.path.join(self.test_dir, "not_a_dir")
        with open(blocker, 'w') as f:
            f.write("x")
        store = PredictionStore(os.path.join(blocker, "predictions.db"), error_handler=self.error_handler)

        with self.assertRaises(StorageUnavailable):
            store.open()
        self.assertFalse(store.is_open)
        with self.assertRaises(StorageUnavailable):
            store.add(make_record(1))

    def test_storage_info(self):
        self.store.add(make_record(1))
        self.store.flush()
        info = self.store.get_storage_info()

        self.assertTrue(info['open'])
        self.assertTrue(info['database_exists'])
        self.assertEqual(info['records_written'], 1)
        self.assertEqual(info['schema_version'], SCHEMA_VERSION)


if __name__ == '__main__':
    unittest.main()
