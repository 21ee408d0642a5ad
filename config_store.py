# config_store.py
import json
import os
from typing import Any, Optional

from errors import StorageError


class ConfigStore:
    """Opaque JSON document persisted to a single file"""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Any]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

    def save(self, document: Any):
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e
