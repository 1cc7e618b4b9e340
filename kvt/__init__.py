"""Key|Value|Timestamp store with last-write-wins merges."""

from .errors import FormatError, KvtError
from .store import Store, ValueTimestamp

__all__ = ["FormatError", "KvtError", "Store", "ValueTimestamp"]
