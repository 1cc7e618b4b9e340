import pytest
from fastapi.testclient import TestClient

from kvt.config import NodeConfig
from kvt.node_api import create_app
from kvt.store import Store


@pytest.fixture
def store():
    return Store(clock=lambda: 1000)


@pytest.fixture
def client(store):
    cfg = NodeConfig(node_id="n1", base_url="http://n1", sync_interval_s=0, purge_interval_s=0, tombstone_ttl_s=0.0000005)
    return TestClient(create_app(cfg, store=store))


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "node_id": "n1", "base_url": "http://n1"}


def test_set_get_delete(client, store):
    r = client.post("/kv/set", json={"key": "A", "value": "one", "ts": 5})
    assert r.json()["ts"] == 5
    assert client.get("/kv/get", params={"key": "A"}).json()["value"] == "one"

    # older delete is discarded
    client.post("/kv/delete", json={"key": "A", "ts": 4})
    assert store.get("A") == "one"

    r = client.post("/kv/delete", json={"key": "A"})
    assert r.json()["ts"] == 1000
    assert client.get("/kv/get", params={"key": "A"}).json()["value"] == ""
    assert client.get("/kv/get", params={"key": "missing"}).json()["value"] == ""


def test_store_snapshot_and_hash(client, store):
    store.set_timestamped("A", "one", 1)
    store.delete_timestamped("B", 2)
    r = client.get("/store")
    assert r.headers["content-type"].startswith("application/json")
    assert r.text == '{"A":["one",1],"B":[null,2]}'
    assert client.get("/store/hash").json() == {"hash": store.hash(), "size": 2}


def test_absorb_endpoint(client, store):
    store.set_timestamped("A", "one", 10)
    r = client.post("/store/absorb", content='{"A":["old",1],"B":["two",2]}')
    assert r.status_code == 200
    body = r.json()
    assert body["absorbed"] == 1
    assert body["hash"] == store.hash()
    assert store.simple_string() == "A=one,B=two"


def test_absorb_rejects_bad_payload_atomically(client, store):
    r = client.post("/store/absorb", content='{"A":["one",1],"B":[2,2]}')
    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "invalid value from: [2,2]"
    assert len(store) == 0


def test_purge_endpoint(client, store):
    store.delete_timestamped("old", 1)
    store.delete_timestamped("recent", 999)
    store.set_timestamped("live", "x", 1)
    assert client.post("/store/purge", json={"cutoff": 2}).json()["purged"] == 1
    # default cutoff is now - ttl = 1000 - 500
    store.delete_timestamped("mid", 400)
    r = client.post("/store/purge", json={})
    assert r.json() == {"ok": True, "purged": 1, "cutoff": 500}
    assert store.simple_string() == "live=x,recent/deleted"


def test_debug_state(client, store):
    store.set_timestamped("A", "one", 1)
    state = client.get("/debug/state").json()
    assert state["node_id"] == "n1"
    assert state["size"] == 1
    assert state["hash"] == store.hash()


def test_default_store_is_created():
    app = create_app(NodeConfig(node_id="n2", base_url="http://n2", sync_interval_s=0, purge_interval_s=0))
    assert isinstance(app.state.store, Store)
    assert TestClient(app).get("/store").text == "{}"


def test_timestamps_outside_int64_are_rejected(client, store):
    assert client.post("/kv/set", json={"key": "A", "value": "x", "ts": 2**63}).status_code == 422
    assert client.post("/kv/delete", json={"key": "A", "ts": -(2**63) - 1}).status_code == 422
    assert client.post("/store/purge", json={"cutoff": 2**70}).status_code == 422
    assert len(store) == 0

    assert client.post("/kv/set", json={"key": "A", "value": "x", "ts": 2**63 - 1}).status_code == 200
    assert Store.from_json(client.get("/store").text).get("A") == "x"


def test_boolean_timestamps_are_rejected(client, store):
    assert client.post("/kv/set", json={"key": "A", "value": "x", "ts": True}).status_code == 422
    assert client.post("/kv/delete", json={"key": "A", "ts": False}).status_code == 422
    assert len(store) == 0


def test_background_tasks_cancelled_on_shutdown():
    cfg = NodeConfig(node_id="n3", base_url="http://n3", peers=["http://peer"], sync_interval_s=60, purge_interval_s=60)
    app = create_app(cfg)
    with TestClient(app):
        tasks = list(app.state.tasks)
        assert len(tasks) == 2
        assert not any(t.done() for t in tasks)
    assert all(t.cancelled() for t in tasks)
    assert app.state.tasks == []
