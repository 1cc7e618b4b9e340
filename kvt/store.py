"""Key|Value|Timestamp store.

Stores can be merged with ``absorb`` and the result holds the newest
key|value|timestamp triplets. Useful for a small set of metadata updated on
several machines that sync up later. ``hash`` quickly tells whether two
stores are in sync.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import FormatError
from .hashing import fingerprint

log = logging.getLogger("store")

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

Clock = Callable[[], int]
Raw = Union[str, bytes, bytearray]


def _raw_text(raw: Raw) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return raw


def _load(raw: Raw) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FormatError(f"invalid json from: {_raw_text(raw)}: {e}") from e


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class ValueTimestamp:
    """Value|Timestamp pair stored for each key.

    A ``None`` value is a deletion marker (tombstone); those are usually
    dropped after a while with ``Store.purge``.
    """

    value: Optional[str]
    timestamp: int

    @classmethod
    def live(cls, value: str, timestamp: int) -> "ValueTimestamp":
        return cls(value, timestamp)

    @classmethod
    def tombstone(cls, timestamp: int) -> "ValueTimestamp":
        return cls(None, timestamp)

    @property
    def is_tombstone(self) -> bool:
        return self.value is None

    def to_wire(self) -> List[Any]:
        return [self.value, self.timestamp]

    def to_json(self) -> str:
        return _dumps(self.to_wire())

    @classmethod
    def from_wire(cls, obj: Any, raw: Optional[Raw] = None) -> "ValueTimestamp":
        """Build an entry from an already-parsed ``[value, timestamp]`` list.

        ``raw`` is only used in error messages; it defaults to ``obj``
        re-encoded.
        """
        shown = _raw_text(raw) if raw is not None else _dumps(obj)
        if not isinstance(obj, list) or len(obj) != 2:
            raise FormatError(f"expected [value,timestamp] from: {shown}")
        value, ts = obj
        if value is not None and not isinstance(value, str):
            raise FormatError(f"invalid value from: {shown}")
        # bool is an int subclass, but true/false are not timestamps
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            raise FormatError(f"invalid timestamp from: {shown}")
        if isinstance(ts, float):
            if not ts.is_integer():
                raise FormatError(f"invalid timestamp from: {shown}")
            ts = int(ts)
        if not INT64_MIN <= ts <= INT64_MAX:
            raise FormatError(f"invalid timestamp from: {shown}")
        return cls(value, ts)

    @classmethod
    def from_json(cls, raw: Raw) -> "ValueTimestamp":
        return cls.from_wire(_load(raw), raw)

    def __str__(self) -> str:
        if self.value is None:
            return f"nil,{self.timestamp}"
        return f"{self.value},{self.timestamp}"


class Store:
    """Key|Value|Timestamp store with last-write-wins semantics.

    The methods below are the only way to touch the mapping; writes are gated
    on timestamps so that stores converge no matter the order of merges.
    Every operation holds the store's lock, so a store can be shared across
    threads.

    ``clock`` returns the current time in nanoseconds and is only used by
    ``set`` and ``delete``.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._data: Dict[str, ValueTimestamp] = {}
        self._lock = threading.RLock()
        self._clock: Clock = clock or time.time_ns

    @classmethod
    def from_entries(cls, entries: Mapping[str, ValueTimestamp], clock: Optional[Clock] = None) -> "Store":
        """Literal construction, e.g. ``Store.from_entries({"A": ValueTimestamp("one", 1)})``."""
        store = cls(clock=clock)
        store._data.update(entries)
        return store

    @classmethod
    def from_json(cls, raw: Raw, clock: Optional[Clock] = None) -> "Store":
        """Decode the wire form. Any bad entry fails the whole store."""
        obj = _load(raw)
        if not isinstance(obj, dict):
            raise FormatError(f"expected {{key:[value,timestamp]}} from: {_raw_text(raw)}")
        entries: Dict[str, ValueTimestamp] = {}
        for key, item in obj.items():
            entries[key] = ValueTimestamp.from_wire(item)
        return cls.from_entries(entries, clock=clock)

    def now(self) -> int:
        return self._clock()

    # Reads

    def get(self, key: str) -> str:
        """Return the value for key.

        An empty string is returned both when the key doesn't exist and when
        it is marked deleted; callers needing to tell them apart use ``entry``.
        """
        with self._lock:
            vt = self._data.get(key)
        if vt is None or vt.value is None:
            return ""
        return vt.value

    def entry(self, key: str) -> Optional[ValueTimestamp]:
        with self._lock:
            return self._data.get(key)

    def items(self) -> List[Tuple[str, ValueTimestamp]]:
        with self._lock:
            return sorted(self._data.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter([k for k, _ in self.items()])

    # Writes

    def _put(self, key: str, vt: ValueTimestamp) -> bool:
        with self._lock:
            existing = self._data.get(key)
            if existing is None or existing.timestamp < vt.timestamp:
                self._data[key] = vt
                return True
            return False

    def set_timestamped(self, key: str, value: str, timestamp: int) -> None:
        # Discarded if there's already an entry with a newer or equal timestamp.
        self._put(key, ValueTimestamp(value, timestamp))

    def set(self, key: str, value: str) -> None:
        self.set_timestamped(key, value, self._clock())

    def delete_timestamped(self, key: str, timestamp: int) -> None:
        self._put(key, ValueTimestamp(None, timestamp))

    def delete(self, key: str) -> None:
        self.delete_timestamped(key, self._clock())

    def purge(self, cutoff: int) -> int:
        """Drop deletion markers older than cutoff. Live entries always stay."""
        with self._lock:
            stale = [k for k, vt in self._data.items() if vt.value is None and vt.timestamp < cutoff]
            for k in stale:
                del self._data[k]
        if stale:
            log.debug("Purged %d tombstones older than %d", len(stale), cutoff)
        return len(stale)

    def absorb(self, other: "Store") -> int:
        """Take every entry of ``other`` that is newer than ours.

        Equal timestamps keep our entry. Entries are immutable so they are
        shared, not copied; treat ``other`` as consumed afterwards anyway.
        Returns how many keys were taken.
        """
        incoming = other.items()
        taken = 0
        with self._lock:
            for key, vt2 in incoming:
                vt = self._data.get(key)
                if vt is None or vt.timestamp < vt2.timestamp:
                    self._data[key] = vt2
                    taken += 1
        log.debug("Absorbed %d of %d entries", taken, len(incoming))
        return taken

    # Fingerprint and formatting

    def hash(self) -> str:
        """16 hex digit FNV-1a fingerprint of the sorted (key, timestamp) pairs.

        Values are not part of it; timestamps alone drive merges.
        """
        return fingerprint((k, vt.timestamp) for k, vt in self.items())

    def to_wire(self) -> Dict[str, List[Any]]:
        return {k: vt.to_wire() for k, vt in self.items()}

    def to_json(self) -> str:
        return _dumps(self.to_wire())

    def __str__(self) -> str:
        return self.to_json()

    def __repr__(self) -> str:
        return f"Store({self.to_json()})"

    def simple_string(self) -> str:
        """``key=value[,key/deleted]`` form without timestamps, handy in tests."""
        parts = []
        for k, vt in self.items():
            if vt.value is None:
                parts.append(f"{k}/deleted")
            else:
                parts.append(f"{k}={vt.value}")
        return ",".join(parts)
