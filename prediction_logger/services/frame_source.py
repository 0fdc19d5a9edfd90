"""Live frame source backed by an OpenCV capture device."""

import os
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

import cv2
import numpy as np

from .interfaces import FrameSourceInterface
from ..config.defaults import CAPTURE_SETTINGS, SYSTEM_CONSTANTS
from ..exceptions import DeviceUnavailable, NoDeviceSelected, NoFrameYet, PermissionDenied
from ..logging_config import get_logger
from ..utils import parse_device_id

logger = get_logger("frame_source")


@dataclass
class CaptureDevice:
    """A capture-capable input device."""
    device_id: str
    label: str

    def to_dict(self) -> dict:
        return {'device_id': self.device_id, 'label': self.label}


def list_devices(max_devices: int = SYSTEM_CONSTANTS["MAX_PROBED_DEVICES"]) -> List[CaptureDevice]:
    """Probe indices 0..max_devices-1 and return the ones that open."""
    devices: List[CaptureDevice] = []
    for index in range(max_devices):
        cap = cv2.VideoCapture(index)
        try:
            if cap.isOpened():
                devices.append(CaptureDevice(str(index), f"Camera {len(devices) + 1}"))
        finally:
            cap.release()

    logger.info(f"Found {len(devices)} capture device(s)")
    return devices


def _device_node(device: Union[int, str]) -> Optional[str]:
    """Return the filesystem node backing a device, where there is one."""
    if isinstance(device, int):
        if sys.platform.startswith("linux"):
            return f"/dev/video{device}"
        return None
    if device.startswith("/dev/"):
        return device
    return None


class FrameSource(FrameSourceInterface):
    """Reads frames from a capture device on a background thread.

    Frames are stored as RGB ``uint8`` arrays. ``current_frame()`` only
    succeeds after the first frame has arrived; before that, and after
    ``stop()``, it raises NoFrameYet.
    """

    def __init__(self, resolution: Tuple[int, int] = CAPTURE_SETTINGS["resolution"],
                 read_fps: float = CAPTURE_SETTINGS["read_fps"],
                 max_consecutive_failures: int = SYSTEM_CONSTANTS["MAX_CONSECUTIVE_READ_FAILURES"]):
        self.resolution = resolution
        self.read_fps = read_fps
        self.max_consecutive_failures = max_consecutive_failures

        self._device_id: Optional[str] = None
        self._cap = None
        self._cap_lock = threading.Lock()
        self._capturing = False
        self._latest_frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()
        self._ready = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None
        self._reader_stop: Optional[threading.Event] = None
        self._device_lost_listeners: List[Callable[[Exception], None]] = []

        self.frames_read = 0
        self.read_failures = 0
        self.last_frame_time: Optional[float] = None

    @property
    def selected_device(self) -> Optional[str]:
        return self._device_id

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def select_device(self, device_id: str) -> None:
        if device_id is None or not str(device_id).strip():
            raise NoDeviceSelected("A capture device must be selected")
        self._device_id = str(device_id).strip()
        logger.info(f"Selected capture device {self._device_id}")

    def add_device_lost_listener(self, listener: Callable[[Exception], None]) -> None:
        """Call ``listener`` when the stream fails beyond recovery."""
        if listener not in self._device_lost_listeners:
            self._device_lost_listeners.append(listener)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the first frame arrives. Returns False on timeout."""
        return self._ready.wait(timeout)

    def start(self) -> None:
        if not self._device_id:
            raise NoDeviceSelected("A capture device must be selected before starting")
        if self._capturing:
            logger.warning("Frame source already started")
            return

        device = parse_device_id(self._device_id)
        node = _device_node(device)
        if node and os.path.exists(node) and not os.access(node, os.R_OK):
            raise PermissionDenied(f"Permission denied for capture device {node}")

        try:
            cap = cv2.VideoCapture(device)
        except cv2.error as e:
            raise DeviceUnavailable(f"Could not open capture device {self._device_id}: {e}") from e

        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Capture device {self._device_id} is not available")

        width, height = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        with self._cap_lock:
            self._cap = cap
        self._ready.clear()
        with self._frame_lock:
            self._latest_frame = None
        # A reader only acts on its own capture and stop event
        reader_stop = threading.Event()
        reader = threading.Thread(target=self._read_loop, args=(cap, reader_stop),
                                  name="frame-reader", daemon=True)
        self._reader_stop = reader_stop
        self._reader_thread = reader
        self._capturing = True
        reader.start()

        logger.info(f"Capture started on device {self._device_id} at {width}x{height}")

    def current_frame(self) -> np.ndarray:
        if not self._capturing or not self._ready.is_set():
            raise NoFrameYet("No frame available yet")
        with self._frame_lock:
            if self._latest_frame is None:
                raise NoFrameYet("No frame available yet")
            return self._latest_frame.copy()

    def stop(self) -> None:
        self._capturing = False
        self._ready.clear()
        if self._reader_stop is not None:
            self._reader_stop.set()
        self._reader_stop = None

        reader = self._reader_thread
        if reader and reader.is_alive() and reader is not threading.current_thread():
            reader.join(timeout=SYSTEM_CONSTANTS["THREAD_JOIN_TIMEOUT_SECONDS"])
        self._reader_thread = None

        self._release_capture()
        with self._frame_lock:
            self._latest_frame = None

        logger.info("Capture stopped")

    def _release_capture(self, cap=None) -> None:
        """Release the open capture; with ``cap``, only if it is still the open one."""
        with self._cap_lock:
            if cap is not None and self._cap is not cap:
                return
            cap, self._cap = self._cap, None
        if cap is not None:
            try:
                cap.release()
            except cv2.error as e:
                logger.error(f"Error releasing capture device: {e}")

    def _read_loop(self, cap, stop_event: threading.Event) -> None:
        """Reader thread: keep the newest frame and signal readiness."""
        frame_interval = 1.0 / self.read_fps if self.read_fps > 0 else 0.0
        consecutive_failures = 0
        lost_error: Optional[Exception] = None

        while not stop_event.is_set():
            start_time = time.time()
            try:
                ok, frame = cap.read()
            except cv2.error as e:
                ok, frame = False, None
                logger.warning(f"Frame read raised: {e}")

            if stop_event.is_set():
                break

            if ok and frame is not None:
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB) if frame.ndim == 3 else frame
                with self._frame_lock:
                    if stop_event.is_set():
                        break
                    self._latest_frame = rgb
                    if not self._ready.is_set():
                        logger.info("First frame received; frame source ready")
                        self._ready.set()
                consecutive_failures = 0
                self.frames_read += 1
                self.last_frame_time = time.time()
            else:
                consecutive_failures += 1
                self.read_failures += 1
                if consecutive_failures >= self.max_consecutive_failures:
                    lost_error = DeviceUnavailable(
                        f"Capture device {self._device_id} stopped delivering frames")
                    break
                time.sleep(SYSTEM_CONSTANTS["READ_RETRY_DELAY_SECONDS"])
                continue

            elapsed = time.time() - start_time
            if frame_interval - elapsed > 0:
                time.sleep(frame_interval - elapsed)

        if lost_error is None or stop_event.is_set():
            return

        stop_event.set()
        self._release_capture(cap)
        if self._reader_thread is not threading.current_thread():
            logger.debug("Stale frame reader exiting after a failed read")
            return

        logger.error(str(lost_error))
        self._capturing = False
        self._ready.clear()
        for listener in list(self._device_lost_listeners):
            try:
                listener(lost_error)
            except Exception as e:
                logger.error(f"Device-lost listener failed: {e}")

    def get_source_info(self) -> dict:
        """Get frame source information and status."""
        return {
            "device_id": self._device_id,
            "capturing": self._capturing,
            "ready": self._ready.is_set(),
            "resolution": self.resolution,
            "frames_read": self.frames_read,
            "read_failures": self.read_failures,
            "last_frame_time": self.last_frame_time
        }
