"""Unit tests for web application."""

import unittest
import json
import shutil
import tempfile
from unittest.mock import Mock, patch
import sys
import os

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from prediction_logger import logging_config
from prediction_logger.capture_loop import CaptureLoop, CaptureState
from prediction_logger.config_manager import ConfigManager
from prediction_logger.exceptions import (
    DeviceUnavailable, ModelLoadError, NoDeviceSelected, NoFrameYet,
    PermissionDenied, StorageUnavailable
)
from prediction_logger.models.prediction import ClassProbabilities, PredictedClass, PredictionRecord
from prediction_logger.services.export_controller import ExportController
from prediction_logger.services.frame_source import CaptureDevice
from prediction_logger.services.interfaces import FrameSourceInterface, PredictionStoreInterface
from prediction_logger.logging_config import setup_logging
from prediction_logger.web.app import PredictionLoggerWebApp, create_app


class TestPredictionLoggerWebApp(unittest.TestCase):
    """Test cases for PredictionLoggerWebApp."""

    def setUp(self):
        """Set up test fixtures."""
        self.mock_loop = Mock(spec=CaptureLoop)
        self.mock_loop.store = Mock(spec=PredictionStoreInterface)
        self.mock_loop.frame_source = Mock(spec=FrameSourceInterface)
        self.mock_loop.frame_source.selected_device = "0"
        self.mock_loop.button_label = "Start Camera"
        self.mock_loop.is_running = False

        self.devices = [CaptureDevice("0", "Camera 1"), CaptureDevice("2", "Camera 2")]
        self.web_app = PredictionLoggerWebApp(self.mock_loop, device_lister=lambda: self.devices)
        self.web_app.app.config['TESTING'] = True
        self.client = self.web_app.app.test_client()

        self.record = PredictionRecord("2026-03-01T12:00:01.000Z", PredictedClass.CLASS_1,
                                       ClassProbabilities(0.9, 0.1))

    def test_web_app_initialization(self):
        """Test web application initialization."""
        self.assertIs(self.web_app.capture_loop, self.mock_loop)
        self.assertIsInstance(self.web_app.export_controller, ExportController)
        self.mock_loop.add_prediction_listener.assert_called_once()

    def test_index_route(self):
        """Test main index route."""
        with patch('prediction_logger.web.app.render_template') as mock_render:
            mock_render.return_value = "Index Page"
            response = self.client.get('/')
            self.assertEqual(response.status_code, 200)
            mock_render.assert_called_once_with('index.html', button_label="Start Camera")

    def test_index_template_renders(self):
        """Test that the bundled template renders the button label."""
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"Start Camera", response.data)

    def test_status(self):
        """Test status endpoint."""
        self.mock_loop.get_status.return_value = {'state': 'idle'}
        with patch('prediction_logger.logging_config.logging_manager', None):
            response = self.client.get('/api/status')

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertTrue(data['success'])
        self.assertEqual(data['data'], {'state': 'idle', 'logging': None})

    def test_status_includes_log_stats(self):
        """Test that status reports the active log files."""
        log_dir = tempfile.mkdtemp()
        self.mock_loop.get_status.return_value = {'state': 'idle'}
        try:
            setup_logging("INFO", log_dir)
            response = self.client.get('/api/status')
        finally:
            logging_config.logging_manager.shutdown()
            logging_config.logging_manager = None
            shutil.rmtree(log_dir, ignore_errors=True)

        stats = json.loads(response.data)['data']['logging']
        self.assertEqual(stats['log_directory'], log_dir)
        self.assertIn('prediction_logger.log', stats['log_files'])
        self.assertEqual(stats['log_level'], 'INFO')

    def test_status_error(self):
        """Test status endpoint failure."""
        self.mock_loop.get_status.side_effect = RuntimeError("broken")
        response = self.client.get('/api/status')

        self.assertEqual(response.status_code, 500)
        self.assertFalse(json.loads(response.data)['success'])

    def test_devices(self):
        """Test device listing."""
        response = self.client.get('/api/devices')

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['data'], [
            {'device_id': "0", 'label': "Camera 1"},
            {'device_id': "2", 'label': "Camera 2"}
        ])
        self.assertEqual(data['selected'], "0")

    def test_devices_error(self):
        """Test device listing failure."""
        self.web_app.device_lister = Mock(side_effect=RuntimeError("no backend"))
        response = self.client.get('/api/devices')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(json.loads(response.data)['error'], 'Unable to access camera devices.')

    def test_select_device(self):
        """Test selecting a device."""
        response = self.client.post('/api/device', json={'device_id': '2'})

        self.assertEqual(response.status_code, 200)
        self.mock_loop.frame_source.select_device.assert_called_once_with('2')

    def test_select_empty_device(self):
        """Test selecting an empty device id."""
        self.mock_loop.frame_source.select_device.side_effect = NoDeviceSelected("A capture device must be selected")
        response = self.client.post('/api/device', json={})

        self.assertEqual(response.status_code, 400)

    def test_select_device_while_running(self):
        """Test that the device cannot change while capturing."""
        self.mock_loop.is_running = True
        response = self.client.post('/api/device', json={'device_id': '2'})

        self.assertEqual(response.status_code, 409)
        self.mock_loop.frame_source.select_device.assert_not_called()

    def test_toggle(self):
        """Test starting capture."""
        def start():
            self.mock_loop.button_label = "Stop Camera"
            return CaptureState.RUNNING

        self.mock_loop.toggle.side_effect = start
        response = self.client.post('/api/toggle')

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['data'], {'state': 'running', 'button_label': 'Stop Camera'})

    def test_toggle_errors(self):
        """Test toggle failure statuses."""
        cases = [
            (NoDeviceSelected("Please select a camera device."), 400),
            (PermissionDenied("Camera access denied"), 403),
            (DeviceUnavailable("Device busy"), 503),
            (ModelLoadError("Model missing"), 503),
            (RuntimeError("unexpected"), 500),
        ]
        for error, status in cases:
            self.mock_loop.toggle.side_effect = error
            response = self.client.post('/api/toggle')

            self.assertEqual(response.status_code, status, msg=repr(error))
            data = json.loads(response.data)
            self.assertFalse(data['success'])
            self.assertEqual(data['error'], str(error))

    def test_latest_prediction(self):
        """Test the latest prediction endpoint."""
        response = self.client.get('/api/predictions/latest')
        self.assertIsNone(json.loads(response.data)['data'])

        listener = self.mock_loop.add_prediction_listener.call_args[0][0]
        listener(self.record)

        response = self.client.get('/api/predictions/latest')
        self.assertEqual(json.loads(response.data)['data'], self.record.to_dict())

    def test_frame(self):
        """Test the current frame endpoint."""
        self.mock_loop.frame_source.current_frame.return_value = np.zeros((48, 64, 3), dtype=np.uint8)
        response = self.client.get('/api/frame')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, 'image/jpeg')
        self.assertTrue(response.data.startswith(b'\xff\xd8'))

    def test_frame_not_ready(self):
        """Test the frame endpoint before the first frame."""
        self.mock_loop.frame_source.current_frame.side_effect = NoFrameYet("No frame available yet")
        response = self.client.get('/api/frame')

        self.assertEqual(response.status_code, 404)

    def test_export(self):
        """Test exporting predictions."""
        self.mock_loop.store.list_all.return_value = [self.record]
        response = self.client.get('/api/export')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, 'application/json')
        self.assertIn('attachment; filename=predictions.json', response.headers['Content-Disposition'])
        self.assertEqual(json.loads(response.data), [self.record.to_dict()])

    def test_export_storage_error(self):
        """Test export when storage is unavailable."""
        self.mock_loop.store.list_all.side_effect = StorageUnavailable("database is locked")
        response = self.client.get('/api/export')

        self.assertEqual(response.status_code, 500)
        self.assertFalse(json.loads(response.data)['success'])

    def test_clear_requires_confirmation(self):
        """Test that clear without confirmation does nothing."""
        for body in (None, {}, {'confirm': False}, {'confirm': 'yes'}):
            response = self.client.post('/api/clear', json=body)
            self.assertEqual(response.status_code, 400)
        self.mock_loop.store.clear_all.assert_not_called()

    def test_clear(self):
        """Test clearing stored predictions."""
        self.mock_loop.store.clear_all.return_value = 3
        response = self.client.post('/api/clear', json={'confirm': True})

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['message'], 'Data cleared from database.')
        self.assertEqual(data['data'], {'cleared': 3})
        self.mock_loop.store.clear_all.assert_called_once()

    def test_clear_storage_error(self):
        """Test clear when storage is unavailable."""
        self.mock_loop.store.clear_all.side_effect = StorageUnavailable("database is locked")
        response = self.client.post('/api/clear', json={'confirm': True})

        self.assertEqual(response.status_code, 500)

class TestCreateApp(unittest.TestCase):
    """Test cases for the create_app factory."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_create_app_with_capture_loop(self):
        """Test wrapping an existing capture loop."""
        mock_loop = Mock(spec=CaptureLoop)
        mock_loop.store = Mock(spec=PredictionStoreInterface)
        mock_loop.store.list_all.return_value = []

        app = create_app(capture_loop=mock_loop)

        web_app = app.extensions['prediction_logger']
        self.assertIs(web_app.capture_loop, mock_loop)
        response = app.test_client().get('/api/export')
        self.assertEqual(response.status_code, 200)
        self.assertIn('filename=predictions.json', response.headers['Content-Disposition'])

    def test_create_app_from_config(self):
        """Test building services from a configuration file."""
        config_manager = ConfigManager(os.path.join(self.test_dir, "config.json"))
        config_manager.update_config(
            database_path=os.path.join(self.test_dir, "data", "predictions.db"),
            export_filename="session.json",
            poll_interval_ms=750
        )

        app = create_app(config_manager=config_manager)
        web_app = app.extensions['prediction_logger']
        try:
            self.assertIsInstance(web_app.capture_loop, CaptureLoop)
            self.assertEqual(web_app.capture_loop.poll_interval, 0.75)

            response = app.test_client().get('/api/export')
            self.assertEqual(response.status_code, 200)
            self.assertIn('filename=session.json', response.headers['Content-Disposition'])
            self.assertEqual(json.loads(response.data), [])
        finally:
            web_app.capture_loop.store.close()



if __name__ == '__main__':
    unittest.main()
