"""Utility functions for the prediction logger."""

import os
from datetime import datetime, timezone
from typing import Optional, Union


def ensure_directory_exists(path: str) -> None:
    """Ensure a directory exists, create if it doesn't."""
    if path and not os.path.exists(path):
        os.makedirs(path, exist_ok=True)


def iso_timestamp(dt: Optional[datetime] = None) -> str:
    """Format a UTC timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def get_file_size_mb(file_path: str) -> float:
    """Get file size in megabytes."""
    if os.path.exists(file_path):
        return os.path.getsize(file_path) / (1024 * 1024)
    return 0.0


def parse_device_id(device_id: str) -> Union[int, str]:
    """Turn a device identifier into something cv2.VideoCapture accepts.

    Numeric identifiers are camera indices; anything else is passed through
    as a device path or stream URL.
    """
    device_id = device_id.strip()
    if device_id.isdigit():
        return int(device_id)
    return device_id
