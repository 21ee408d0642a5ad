# errors.py


class ABTestError(Exception):
    """Base class for A/B testing failures"""


class ValidationError(ABTestError):
    """Tracking payload is missing required fields"""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class ParseError(ABTestError):
    """A line of the event log could not be decoded"""


class NoActiveTest(ABTestError):
    """No active test (or no variants) to assign users to"""


class StorageError(ABTestError):
    """Event log or config file could not be read or written"""


class NetworkError(ABTestError):
    """Tracking event could not be delivered"""
