# event_log.py
import json
import logging
import os
import time
from typing import Any, Dict, List

from errors import ParseError, StorageError, ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("userId", "eventName", "testData")


def now_ms() -> int:
    return int(time.time() * 1000)


def validate_event(payload: Any) -> Dict[str, Any]:
    """Check a tracking payload and build the record that gets written"""
    if not isinstance(payload, dict):
        raise ValidationError(REQUIRED_FIELDS)

    # Identifiers must be non-empty; testData only has to be present
    missing = [name for name in ("userId", "eventName") if not payload.get(name)]
    if payload.get("testData") is None:
        missing.append("testData")
    if missing:
        raise ValidationError(missing)

    record = {
        "timestamp": payload.get("timestamp") or now_ms(),
        "userId": payload["userId"],
        "eventName": payload["eventName"],
        "testData": payload["testData"],
    }
    if "data" in payload:
        record["data"] = payload["data"]
    return record


def parse_line(line: str) -> Dict[str, Any]:
    try:
        event = json.loads(line)
    except ValueError as e:
        raise ParseError(str(e)) from e
    if not isinstance(event, dict):
        raise ParseError("Event line is not a JSON object")
    return event


class EventLog:
    """Append-only newline-delimited JSON log of tracking events.

    There is no update, delete, rotation or index: every read scans the
    whole file, which is fine only while the log stays small.
    """

    def __init__(self, path: str):
        self.path = path

    def _ensure_dir(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def append(self, payload: Any) -> Dict[str, Any]:
        """Validate and durably append one event before returning it"""
        record = validate_event(payload)
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n"

        try:
            self._ensure_dir()
            # One write per line keeps concurrent appends from interleaving mid-line
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise StorageError(f"Could not append to {self.path}: {e}") from e

        return record

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> List[Dict[str, Any]]:
        """Load every well-formed event in file order, skipping corrupt lines"""
        if not self.exists():
            return []

        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

        events = []
        skipped = 0
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(parse_line(line))
            except ParseError:
                skipped += 1

        if skipped:
            logger.debug("Skipped %d unparseable lines in %s", skipped, self.path)
        return events
