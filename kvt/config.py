from dataclasses import dataclass, field
from typing import List

@dataclass
class NodeConfig:
    node_id: str
    base_url: str
    peers: List[str] = field(default_factory=list)
    debug: bool = False

    request_timeout_s: float = 1.5
    sync_interval_s: float = 5.0
    purge_interval_s: float = 60.0
    # How long tombstones are kept so late merges still learn about deletions.
    tombstone_ttl_s: float = 86400.0

    @property
    def tombstone_ttl_ns(self) -> int:
        return round(self.tombstone_ttl_s * 1_000_000_000)
