from typing import Iterable, Tuple

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


class Fnv1a64:
    def __init__(self):
        self._h = FNV64_OFFSET

    def update(self, data: bytes) -> None:
        h = self._h
        for b in data:
            h ^= b
            h = (h * FNV64_PRIME) & _MASK64
        self._h = h

    def intdigest(self) -> int:
        return self._h

    def hexdigest(self) -> str:
        return f"{self._h:016x}"


# Fingerprint of (key, timestamp) pairs. Keys must already be sorted.
def fingerprint(pairs: Iterable[Tuple[str, int]]) -> str:
    hasher = Fnv1a64()
    for key, ts in pairs:
        hasher.update(f"{key}\n{ts}\n".encode("utf-8"))
    return hasher.hexdigest()
