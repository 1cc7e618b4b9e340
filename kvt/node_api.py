import asyncio
import logging
from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field, StrictInt
from typing import Optional

from .config import NodeConfig
from .errors import FormatError
from .logging_setup import setup_logging
from .store import INT64_MAX, INT64_MIN, Store
from .sync import SyncClient, purge_loop, sync_loop

log = logging.getLogger("node")

class SetReq(BaseModel):
    key: str
    value: str
    ts: Optional[StrictInt] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)

class DelReq(BaseModel):
    key: str
    ts: Optional[StrictInt] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)

class PurgeReq(BaseModel):
    cutoff: Optional[StrictInt] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)

def create_app(cfg: NodeConfig, store: Optional[Store] = None) -> FastAPI:
    setup_logging(cfg.debug)
    app = FastAPI(title=f"kvt node {cfg.node_id}")

    store = store if store is not None else Store()
    sc = SyncClient(timeout_s=cfg.request_timeout_s)
    app.state.store = store
    app.state.sync_client = sc
    app.state.tasks = []

    @app.on_event("startup")
    async def _startup():
        log.info("Starting node %s at %s, peers=%s", cfg.node_id, cfg.base_url, cfg.peers)
        if cfg.peers and cfg.sync_interval_s > 0:
            app.state.tasks.append(asyncio.create_task(sync_loop(sc, store, cfg.peers, cfg.sync_interval_s)))
        if cfg.purge_interval_s > 0:
            app.state.tasks.append(asyncio.create_task(purge_loop(store, cfg.purge_interval_s, cfg.tombstone_ttl_ns)))

    @app.on_event("shutdown")
    async def _shutdown():
        for task in app.state.tasks:
            task.cancel()
        await asyncio.gather(*app.state.tasks, return_exceptions=True)
        app.state.tasks.clear()

    @app.get("/health")
    def health():
        return {"ok": True, "node_id": cfg.node_id, "base_url": cfg.base_url}

    @app.get("/debug/state")
    def debug_state():
        return {
            "node_id": cfg.node_id,
            "base_url": cfg.base_url,
            "peers": cfg.peers,
            "size": len(store),
            "hash": store.hash(),
            "sync_interval_s": cfg.sync_interval_s,
            "purge_interval_s": cfg.purge_interval_s,
            "tombstone_ttl_s": cfg.tombstone_ttl_s,
        }

    # Public client endpoints
    @app.get("/kv/get")
    def kv_get(key: str):
        return {"ok": True, "key": key, "value": store.get(key)}

    @app.post("/kv/set")
    def kv_set(req: SetReq):
        ts = req.ts if req.ts is not None else store.now()
        store.set_timestamped(req.key, req.value, ts)
        return {"ok": True, "key": req.key, "ts": ts}

    @app.post("/kv/delete")
    def kv_delete(req: DelReq):
        ts = req.ts if req.ts is not None else store.now()
        store.delete_timestamped(req.key, ts)
        return {"ok": True, "key": req.key, "ts": ts}

    # Whole-store endpoints used by peers
    @app.get("/store")
    def get_store():
        return Response(content=store.to_json(), media_type="application/json")

    @app.get("/store/hash")
    def get_hash():
        return {"hash": store.hash(), "size": len(store)}

    @app.post("/store/absorb")
    async def absorb(request: Request):
        body = await request.body()
        try:
            incoming = Store.from_json(body)
        except FormatError as e:
            raise HTTPException(status_code=400, detail={"error": "bad_store", "message": str(e)})
        absorbed = store.absorb(incoming)
        return {"ok": True, "absorbed": absorbed, "hash": store.hash()}

    @app.post("/store/purge")
    def purge(req: PurgeReq):
        cutoff = req.cutoff if req.cutoff is not None else store.now() - cfg.tombstone_ttl_ns
        return {"ok": True, "purged": store.purge(cutoff), "cutoff": cutoff}

    return app
