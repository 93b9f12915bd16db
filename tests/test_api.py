import threading
from dataclasses import replace

from fastapi.testclient import TestClient

from ruche.errors import UpstreamFailure


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_create_node(client, runtime):
    r = client.post("/node")
    assert r.status_code == 201
    body = r.json()
    assert body["id"] == 1
    assert body["name"] == "node_01"
    assert body["api_port"] == "1701"
    assert body["p2p_port"] == "1801"
    assert body["neighborhood"] == "1111101010"
    assert "password" not in " ".join(body)
    assert runtime.containers["node_01"].status == "running"


def test_list_nodes_sorted(client, registry, new_record):
    registry.add(new_record(7))
    registry.add(new_record(2))

    r = client.get("/nodes")
    assert r.status_code == 200
    assert [n["id"] for n in r.json()] == [2, 7]
    assert r.json()[0]["api_port"] == "1702"


def test_get_node(client):
    client.post("/node")

    assert client.get("/node/1").json()["name"] == "node_01"

    r = client.get("/node/5")
    assert r.status_code == 404
    assert r.json()["detail"] == "Unable to find node with id 5."


def test_node_id_out_of_range_is_rejected(client):
    assert client.get("/node/100").status_code == 422
    assert client.get("/node/0").status_code == 422
    assert client.delete("/node/abc/req").status_code == 422


def test_capacity_exceeded(client, registry, new_record):
    for node_id in range(1, 100):
        registry.add(new_record(node_id))

    r = client.post("/node")
    assert r.status_code == 400
    assert "Max capacity reached" in r.json()["detail"]


def test_upstream_failure_maps_to_502(client, orchestrator, registry):
    def down():
        raise UpstreamFailure("neighborhood", "HTTP 503")

    orchestrator.neighborhood_lookup = down

    r = client.post("/node")
    assert r.status_code == 502
    assert r.json()["detail"] == "neighborhood: HTTP 503"
    assert registry.count() == 0


def test_provisioning_timeout(orchestrator):
    from main import create_app

    release = threading.Event()
    orchestrator.settings = replace(orchestrator.settings, provision_timeout_s=0.2)
    orchestrator.provision = lambda: release.wait(5)

    try:
        with TestClient(create_app(orchestrator)) as c:
            r = c.post("/node")
    finally:
        release.set()

    assert r.status_code == 504
    assert "timed out" in r.json()["detail"]


def test_delete_flow(client, registry, runtime):
    client.post("/node")

    r = client.delete("/node/1/req")
    assert r.status_code == 202
    assert r.json() == {"id": 1, "confirm_within_s": 30}

    r = client.delete("/node/1")
    assert r.status_code == 204
    assert registry.get(1) is None
    assert "node_01" not in runtime.containers

    assert client.get("/node/1").status_code == 404


def test_delete_without_request(client, registry):
    client.post("/node")

    r = client.delete("/node/1")
    assert r.status_code == 400
    assert "No request made in last 30sec" in r.json()["detail"]
    assert registry.get(1) is not None


def test_delete_after_window(client, clock, registry):
    client.post("/node")
    client.delete("/node/1/req")
    clock.advance(30)

    assert client.delete("/node/1").status_code == 400
    assert registry.get(1) is not None


def test_delete_unknown_node(client):
    assert client.delete("/node/9/req").status_code == 404
    assert client.delete("/node/9").status_code == 404


def test_start_stop_recreate(client, runtime):
    client.post("/node")

    r = client.post("/node/1/stop")
    assert r.status_code == 200
    assert runtime.containers["node_01"].status == "exited"

    assert client.post("/node/1/start").status_code == 200
    assert runtime.containers["node_01"].status == "running"

    r = client.post("/node/1/recreate")
    assert r.status_code == 200
    assert r.json()["id"] == 1

    assert client.post("/node/3/start").status_code == 404


def test_logs(client):
    client.post("/node")
    client.post("/node/1/stop")

    r = client.get("/node/1/logs")
    assert r.status_code == 200
    assert r.json() == {"name": "node_01", "lines": ["node_01 started", "node_01 stopped"]}


def test_logs_of_missing_container(client, runtime):
    client.post("/node")
    del runtime.containers["node_01"]

    r = client.get("/node/1/logs")
    assert r.status_code == 502
    assert "No such container" in r.json()["detail"]


def test_bulk_endpoints(client, runtime):
    client.post("/node")
    client.post("/node")
    del runtime.containers["node_02"]

    r = client.post("/nodes/stop")
    assert r.status_code == 200
    assert [(x["name"], x["ok"]) for x in r.json()] == [("node_01", True), ("node_02", False)]

    r = client.post("/nodes/start")
    assert r.json()[0] == {"name": "node_01", "ok": True, "error": None}

    r = client.post("/nodes/recreate")
    assert all(x["ok"] for x in r.json())
    assert runtime.containers["node_02"].status == "running"


def test_events(client):
    client.post("/node")
    client.delete("/node/1/req")

    r = client.get("/events", params={"limit": 1})
    assert r.status_code == 200
    events = r.json()
    assert len(events) == 1
    assert events[0]["level"] == "WARN"
    assert events[0]["node_id"] == 1

    assert client.get("/events", params={"limit": 0}).status_code == 422


def test_shutdown_closes_runtime(orchestrator, runtime, monkeypatch):
    from main import create_app

    closed = []
    monkeypatch.setattr(runtime, "close", lambda: closed.append(True))

    with TestClient(create_app(orchestrator)) as c:
        assert c.get("/health").status_code == 200
        assert closed == []

    assert closed == [True]
