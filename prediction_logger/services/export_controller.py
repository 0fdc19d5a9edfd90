"""Export of the stored prediction log."""

import json
import os
from typing import Optional

from .interfaces import PredictionStoreInterface
from ..logging_config import get_logger
from ..utils import ensure_directory_exists

logger = get_logger("export_controller")

EXPORT_MIMETYPE = "application/json"


class ExportController:
    """Serializes every stored prediction as a pretty-printed JSON array."""

    def __init__(self, store: PredictionStoreInterface, filename: str = "predictions.json"):
        self.store = store
        self.filename = filename

    def export_all(self) -> str:
        """Return all records, in insertion order, as JSON text.

        Raises StorageUnavailable if the store cannot be read.
        """
        records = self.store.list_all()
        payload = json.dumps([record.to_dict() for record in records], indent=2)
        logger.info(f"Exported {len(records)} prediction record(s)")
        return payload

    def export_to_file(self, directory: Optional[str] = None) -> str:
        """Write the export into ``directory`` and return the file path."""
        directory = directory or os.getcwd()
        ensure_directory_exists(directory)
        path = os.path.join(directory, self.filename)

        payload = self.export_all()
        with open(path, 'w', encoding='utf-8') as f:
            f.write(payload)

        logger.info(f"Predictions written to {path}")
        return path
