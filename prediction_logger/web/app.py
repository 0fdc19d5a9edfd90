"""Flask web application for the prediction logger."""

from typing import Callable, List, Optional

import cv2
from flask import Flask, Response, jsonify, render_template, request

from ..capture_loop import CaptureLoop
from ..config_manager import ConfigManager
from ..exceptions import (
    DeviceUnavailable, ModelLoadError, NoDeviceSelected, NoFrameYet,
    PermissionDenied, StorageUnavailable
)
from .. import logging_config
from ..logging_config import get_logger
from ..models.prediction import PredictionRecord
from ..services.export_controller import EXPORT_MIMETYPE, ExportController
from ..services.frame_source import CaptureDevice, list_devices

logger = get_logger("web")

# Setup failures shown to the user as a blocking message, with their HTTP status
_TOGGLE_ERRORS = (
    (NoDeviceSelected, 400),
    (PermissionDenied, 403),
    (DeviceUnavailable, 503),
    (ModelLoadError, 503),
)


class PredictionLoggerWebApp:
    """Flask application exposing the capture toggle, export and clear controls."""

    def __init__(self, capture_loop: CaptureLoop,
                 export_controller: Optional[ExportController] = None,
                 device_lister: Callable[[], List[CaptureDevice]] = list_devices):
        self.app = Flask(__name__,
                         template_folder='templates')

        self.capture_loop = capture_loop
        self.export_controller = export_controller or ExportController(capture_loop.store)
        self.device_lister = device_lister
        self.latest_record: Optional[PredictionRecord] = None

        self.capture_loop.add_prediction_listener(self._on_prediction)

        self._setup_routes()

        logger.info("Prediction logger web application initialized")

    def _on_prediction(self, record: PredictionRecord) -> None:
        self.latest_record = record

    @staticmethod
    def _error(message: str, status: int):
        return jsonify({
            'success': False,
            'error': message
        }), status

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.route('/')
        def index():
            """Control page."""
            return render_template('index.html', button_label=self.capture_loop.button_label)

        @self.app.route('/api/status')
        def api_status():
            """Get capture status."""
            try:
                status = self.capture_loop.get_status()
                manager = logging_config.logging_manager
                status['logging'] = manager.get_log_stats() if manager else None
                return jsonify({
                    'success': True,
                    'data': status
                })
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                return self._error(str(e), 500)

        @self.app.route('/api/devices')
        def api_devices():
            """List capture devices."""
            try:
                devices = self.device_lister()
            except Exception as e:
                logger.error(f"Error accessing media devices: {e}")
                return self._error('Unable to access camera devices.', 500)
            return jsonify({
                'success': True,
                'data': [device.to_dict() for device in devices],
                'selected': self.capture_loop.frame_source.selected_device
            })

        @self.app.route('/api/device', methods=['POST'])
        def api_select_device():
            """Select the capture device."""
            if self.capture_loop.is_running:
                return self._error('Stop the camera before changing devices.', 409)

            data = request.get_json(silent=True) or {}
            try:
                self.capture_loop.frame_source.select_device(data.get('device_id', ''))
            except NoDeviceSelected as e:
                return self._error(str(e), 400)

            return jsonify({
                'success': True,
                'message': f"Selected device {self.capture_loop.frame_source.selected_device}"
            })

        @self.app.route('/api/toggle', methods=['POST'])
        def api_toggle():
            """Start or stop capture."""
            try:
                state = self.capture_loop.toggle()
            except Exception as e:
                for error_type, status in _TOGGLE_ERRORS:
                    if isinstance(e, error_type):
                        logger.warning(f"Capture toggle refused: {e}")
                        return self._error(str(e), status)
                logger.error(f"Error toggling capture: {e}")
                return self._error(str(e), 500)

            return jsonify({
                'success': True,
                'data': {
                    'state': state.value,
                    'button_label': self.capture_loop.button_label
                }
            })

        @self.app.route('/api/predictions/latest')
        def api_latest_prediction():
            """Most recent prediction from this process."""
            return jsonify({
                'success': True,
                'data': self.latest_record.to_dict() if self.latest_record else None
            })

        @self.app.route('/api/frame')
        def api_frame():
            """Current frame as JPEG."""
            try:
                frame = self.capture_loop.frame_source.current_frame()
            except NoFrameYet:
                return self._error('No frame available', 404)

            ok, buffer = cv2.imencode('.jpg', cv2.cvtColor(frame, cv2.COLOR_RGB2BGR),
                                      [cv2.IMWRITE_JPEG_QUALITY, 85])
            if not ok:
                return self._error('Could not encode frame', 500)
            return Response(buffer.tobytes(), mimetype='image/jpeg')

        @self.app.route('/api/export')
        def api_export():
            """Download every stored prediction as predictions.json."""
            try:
                payload = self.export_controller.export_all()
            except StorageUnavailable as e:
                logger.error(f"Error exporting predictions: {e}")
                return self._error(f"Unable to read stored predictions: {e}", 500)

            filename = self.export_controller.filename
            return Response(
                payload,
                mimetype=EXPORT_MIMETYPE,
                headers={'Content-Disposition': f'attachment; filename={filename}'}
            )

        @self.app.route('/api/clear', methods=['POST'])
        def api_clear():
            """Clear all stored predictions. Requires {"confirm": true}."""
            data = request.get_json(silent=True) or {}
            if data.get('confirm') is not True:
                return self._error('Confirmation required to clear all data.', 400)

            try:
                cleared = self.capture_loop.store.clear_all()
            except StorageUnavailable as e:
                logger.error(f"Error clearing predictions: {e}")
                return self._error(f"Unable to clear stored predictions: {e}", 500)

            return jsonify({
                'success': True,
                'message': 'Data cleared from database.',
                'data': {'cleared': cleared}
            })

    def run(self, host='127.0.0.1', port=5000, debug=False):
        """Run the Flask application."""
        logger.info(f"Starting prediction logger web interface on {host}:{port}")
        self.app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)

    def get_app(self):
        """Get the Flask app instance for external WSGI servers."""
        return self.app


def create_app(capture_loop: Optional[CaptureLoop] = None,
               config_manager: Optional[ConfigManager] = None) -> Flask:
    """Factory function to create the Flask app."""
    if capture_loop is None:
        config = (config_manager or ConfigManager()).get_config()
        capture_loop = CaptureLoop.from_config(config)
        export_controller = ExportController(capture_loop.store, config.export_filename)
    else:
        export_controller = None
    web_app = PredictionLoggerWebApp(capture_loop, export_controller)
    app = web_app.get_app()
    app.extensions['prediction_logger'] = web_app
    return app
