import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from .errors import FormatError
from .store import Store

log = logging.getLogger("sync")

@dataclass
class SyncResult:
    peer: str
    ok: bool
    in_sync: bool = False
    absorbed: int = 0
    pushed: bool = False
    error: Optional[str] = None

class SyncClient:
    """Anti-entropy with peer nodes: compare hashes, pull, absorb, push back."""

    def __init__(self, timeout_s: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_s = timeout_s
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport)

    async def fetch_hash(self, client: httpx.AsyncClient, peer: str) -> Optional[str]:
        try:
            r = await client.get(f"{peer}/store/hash")
            r.raise_for_status()
            body = r.json()
            h = body.get("hash") if isinstance(body, dict) else None
            if not isinstance(h, str):
                log.warning("Hash from %s is malformed: %r", peer, body)
                return None
            return h
        except (httpx.HTTPError, ValueError) as e:
            log.warning("Hash from %s failed: %s", peer, e)
            return None

    async def fetch_store(self, client: httpx.AsyncClient, peer: str) -> Optional[Store]:
        try:
            r = await client.get(f"{peer}/store")
            r.raise_for_status()
            return Store.from_json(r.content)
        except httpx.HTTPError as e:
            log.warning("Snapshot from %s failed: %s", peer, e)
        except FormatError as e:
            log.warning("Snapshot from %s is not decodable: %s", peer, e)
        return None

    async def push_store(self, client: httpx.AsyncClient, peer: str, store: Store) -> bool:
        try:
            r = await client.post(
                f"{peer}/store/absorb",
                content=store.to_json().encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
            return r.status_code == 200
        except httpx.HTTPError as e:
            log.warning("Push to %s failed: %s", peer, e)
            return False

    async def sync_with(self, store: Store, peer: str) -> SyncResult:
        async with self._client() as client:
            remote_hash = await self.fetch_hash(client, peer)
            if remote_hash is None:
                return SyncResult(peer, ok=False, error="hash_unavailable")
            if remote_hash == store.hash():
                return SyncResult(peer, ok=True, in_sync=True)

            remote = await self.fetch_store(client, peer)
            if remote is None:
                return SyncResult(peer, ok=False, error="snapshot_unavailable")
            absorbed = store.absorb(remote)

            # Peer had everything we have; nothing to send back.
            if store.hash() == remote_hash:
                return SyncResult(peer, ok=True, absorbed=absorbed)

            pushed = await self.push_store(client, peer, store)
            log.debug("Synced with %s: absorbed=%d pushed=%s", peer, absorbed, pushed)
            return SyncResult(peer, ok=pushed, absorbed=absorbed, pushed=pushed,
                              error=None if pushed else "push_failed")

    async def sync_all(self, store: Store, peers: List[str]) -> List[SyncResult]:
        return [await self.sync_with(store, peer) for peer in peers]

async def sync_loop(client: SyncClient, store: Store, peers: List[str], interval_s: float):
    while True:
        await asyncio.sleep(interval_s)
        try:
            results = await client.sync_all(store, peers)
        except Exception:
            log.exception("Sync round failed")
            continue
        failed = [r.peer for r in results if not r.ok]
        if failed:
            log.info("Sync round done, unreachable peers: %s", failed)

async def purge_loop(store: Store, interval_s: float, ttl_ns: int):
    while True:
        await asyncio.sleep(interval_s)
        purged = store.purge(store.now() - ttl_ns)
        if purged:
            log.info("Purged %d tombstones", purged)
