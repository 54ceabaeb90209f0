import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dsasync.web.security import NetworkAllowlistMiddleware, get_allowed_nets, parse_nets


def _app(allowed_nets) -> FastAPI:
    app = FastAPI()
    app.add_middleware(NetworkAllowlistMiddleware, allowed_nets=allowed_nets)

    @app.get("/api/files")
    def files():
        return {"ok": True}

    @app.get("/api/healthz")
    def healthz():
        return {"ok": True}

    return app


def test_parse_nets_accepts_hosts_and_ranges():
    nets = parse_nets("127.0.0.1, 10.0.0.0/8,,::1")
    assert [str(n) for n in nets] == ["127.0.0.1/32", "10.0.0.0/8", "::1/128"]


def test_parse_nets_rejects_garbage():
    with pytest.raises(ValueError, match="invalid allowed network: nope"):
        parse_nets("127.0.0.1,nope")


def test_allowed_client_passes():
    client = TestClient(_app(["127.0.0.1/32"]), client=("127.0.0.1", 50000))
    resp = client.get("/api/files")
    assert resp.status_code == 200


def test_client_outside_allowlist_is_forbidden():
    client = TestClient(_app(["127.0.0.1/32"]), client=("10.1.2.3", 50000))
    resp = client.get("/api/files")
    assert resp.status_code == 403
    assert resp.json() == {"detail": "client_not_allowed"}


def test_unrecognized_client_address_is_forbidden():
    resp = TestClient(_app(["127.0.0.1/32"])).get("/api/files")
    assert resp.status_code == 403
    assert resp.json() == {"detail": "client_address_unrecognized"}


def test_empty_allowlist_lets_everyone_through():
    client = TestClient(_app([]), client=("10.1.2.3", 50000))
    assert client.get("/api/files").status_code == 200


def test_misconfigured_allowlist_locks_guarded_paths():
    client = TestClient(_app(["not-a-net"]), client=("127.0.0.1", 50000))
    resp = client.get("/api/files")
    assert resp.status_code == 503
    assert resp.json()["detail"].startswith("allowlist_misconfigured")


def test_healthz_bypasses_allowlist():
    client = TestClient(_app(["127.0.0.1/32"]), client=("10.1.2.3", 50000))
    assert client.get("/api/healthz").status_code == 200

    client = TestClient(_app(["not-a-net"]), client=("10.1.2.3", 50000))
    assert client.get("/api/healthz").status_code == 200


def test_get_allowed_nets_prefers_environment(monkeypatch):
    monkeypatch.setenv("ALLOWED_NETS", " 192.168.0.0/16 , 127.0.0.1/32 ")
    assert get_allowed_nets(["10.0.0.0/8"]) == ["192.168.0.0/16", "127.0.0.1/32"]


def test_get_allowed_nets_falls_back_to_config(monkeypatch):
    monkeypatch.delenv("ALLOWED_NETS", raising=False)
    assert get_allowed_nets([" 10.0.0.0/8 ", ""]) == ["10.0.0.0/8"]
    assert get_allowed_nets() == ["127.0.0.1/32", "::1/128"]
