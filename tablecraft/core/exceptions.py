# tablecraft/core/exceptions.py
from typing import Optional


class TableCraftError(Exception):
    """Base class for all compiler errors"""


class ConfigurationError(TableCraftError):
    """Malformed descriptor: missing table name, unresolvable relation alias"""


class FormatError(TableCraftError):
    """Formula evaluation or type-format failure on a single cell"""


class ResourceMissingError(TableCraftError):
    """Referenced file (image, thumbnail) is absent on disk"""

    def __init__(self, path: str):
        super().__init__(f"Resource not found: {path}")
        self.path = path


class HarnessError(TableCraftError):
    """Modular pipeline failed during a parity run"""


class DiagnosticIOError(TableCraftError):
    """Diagnostic artifact could not be written"""


class SecurityViolation(TableCraftError):
    """Malicious pattern detected in request input"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DataSourceUnavailableError(TableCraftError):
    """No data source reachable; no response can be produced"""
