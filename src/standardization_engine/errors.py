"""
Exception taxonomy for the standardization engine.

Structural and configuration problems raise; data-level anomalies are
recorded in the cleaning report instead.
"""

from typing import List, Optional


class StandardizationError(Exception):
    """Base class for all fatal engine errors."""


class NamingError(StandardizationError):
    """Column names cannot be made unique deterministically."""

    def __init__(self, message: str, columns: Optional[List[str]] = None):
        super().__init__(message)
        self.columns = columns or []


class WordlistError(StandardizationError):
    """A wordlist rule is malformed or targets a column absent from the table."""


class DictionaryError(StandardizationError):
    """A data dictionary is malformed."""


class DateFormatError(StandardizationError):
    """A configured date format uses an unsupported directive."""


class ConfigError(StandardizationError):
    """An engine configuration file is malformed or fails validation."""
