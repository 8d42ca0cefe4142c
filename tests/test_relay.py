import errno
import logging
import socket

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app import main as relay
from config.settings import get_settings


class FakeProvider:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def generate(self, model, contents):
        self.calls.append((model, contents))
        if self.error:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client():
    return TestClient(relay.app)


def _use_provider(monkeypatch, provider):
    monkeypatch.setattr(relay, "get_provider", lambda: provider)
    return provider


def test_health_reports_model_and_key(client, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    get_settings.cache_clear()

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "model": "gemini-test", "hasKey": True}


def test_health_without_key(client, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
    get_settings.cache_clear()

    assert client.get("/api/health").json()["hasKey"] is False


def test_chat_returns_extracted_text(client, monkeypatch):
    provider = _use_provider(
        monkeypatch,
        FakeProvider({"candidates": [{"content": {"parts": [{"text": "hello!"}]}}]}),
    )

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.json() == {"result": "hello!"}
    assert provider.calls == [("gemini-test", [{"role": "user", "parts": [{"text": "hi"}]}])]


def test_chat_forwards_roles_and_order_untouched(client, monkeypatch):
    provider = _use_provider(
        monkeypatch,
        FakeProvider({"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}),
    )
    messages = [
        {"role": "model", "content": "greeting"},
        {"role": "user", "content": "question"},
        {"role": "narrator", "content": "aside"},
    ]

    client.post("/api/chat", json={"messages": messages})

    _, contents = provider.calls[0]
    assert contents == [{"role": m["role"], "parts": [{"text": m["content"]}]} for m in messages]


def test_chat_with_unknown_response_shape_returns_json(client, monkeypatch):
    _use_provider(monkeypatch, FakeProvider({}))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.json() == {"result": "{}"}


def test_chat_without_credential_is_503(client, monkeypatch):
    _use_provider(monkeypatch, None)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 503
    assert response.json() == {"error": relay.MISSING_KEY_ERROR}


def test_chat_without_credential_uses_real_lookup(client, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
    get_settings.cache_clear()
    relay.get_provider.cache_clear()
    try:
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    finally:
        relay.get_provider.cache_clear()

    assert response.status_code == 503
    assert "error" in response.json()


@pytest.mark.parametrize(
    "body",
    [
        {"messages": "not-an-array"},
        {"messages": {"role": "user"}},
        {},
        ["messages"],
    ],
)
def test_chat_rejects_non_array_messages(client, monkeypatch, body):
    provider = _use_provider(monkeypatch, FakeProvider({}))

    response = client.post("/api/chat", json=body)

    assert response.status_code == 500
    assert response.json() == {"error": "messages must be an array"}
    assert provider.calls == []


def test_chat_rejects_malformed_message(client, monkeypatch):
    _use_provider(monkeypatch, FakeProvider({}))

    response = client.post("/api/chat", json={"messages": [{"role": "user"}]})

    assert response.status_code == 500
    assert "messages.0.content" in response.json()["error"]


def test_chat_rejects_invalid_json(client, monkeypatch):
    _use_provider(monkeypatch, FakeProvider({}))

    response = client.post("/api/chat", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 500
    assert response.json()["error"]


def test_provider_failure_is_500_and_process_survives(client, monkeypatch):
    _use_provider(monkeypatch, FakeProvider(error=RuntimeError("quota exceeded")))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert response.status_code == 500
    assert response.json() == {"error": "quota exceeded"}

    assert client.get("/api/health").status_code == 200


def test_oversized_body_is_413(client, monkeypatch):
    monkeypatch.setenv("MAX_BODY_BYTES", "64")
    get_settings.cache_clear()
    provider = _use_provider(monkeypatch, FakeProvider({}))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "x" * 200}]})

    assert response.status_code == 413
    assert response.json() == {"error": "Request body too large."}
    assert provider.calls == []


def test_chunked_body_over_limit_is_413(client, monkeypatch):
    monkeypatch.setenv("MAX_BODY_BYTES", "64")
    get_settings.cache_clear()
    provider = _use_provider(monkeypatch, FakeProvider({}))

    def chunks():
        yield b'{"messages": [{"role": "user", "content": "'
        yield b"x" * 200
        yield b'"}]}'

    response = client.post("/api/chat", content=chunks(), headers={"content-type": "application/json"})

    assert response.status_code == 413
    assert response.json() == {"error": "Request body too large."}
    assert provider.calls == []


def test_cors_headers_are_sent(client):
    response = client.get("/api/health", headers={"Origin": "http://example.com"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_public_directory_is_served(tmp_path):
    (tmp_path / "index.html").write_text("<h1>chat</h1>")
    target = FastAPI()

    @target.get("/api/health")
    def health():
        return {"status": "ok"}

    assert relay.mount_public(target, tmp_path) is True
    static_client = TestClient(target)

    assert static_client.get("/").text == "<h1>chat</h1>"
    assert static_client.get("/api/health").json() == {"status": "ok"}


def test_missing_public_directory_is_skipped(tmp_path):
    target = FastAPI()

    assert relay.mount_public(target, tmp_path / "nope") is False
    assert all(getattr(route, "name", None) != "public" for route in target.routes)


def test_find_port_skips_port_in_use():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as held:
        held.bind(("127.0.0.1", 0))
        held.listen(1)
        busy_port = held.getsockname()[1]

        chosen = relay.find_port("127.0.0.1", busy_port, 3)

    assert busy_port < chosen <= busy_port + 3


def test_find_port_gives_up_after_attempts(monkeypatch, caplog):
    monkeypatch.setattr(relay, "_port_available", lambda host, port: False)

    with caplog.at_level(logging.WARNING, logger="geminichat"):
        with pytest.raises(OSError) as excinfo:
            relay.find_port("127.0.0.1", 4000, 2)

    assert excinfo.value.errno == errno.EADDRINUSE
    assert "Port 4000 in use, trying 4001..." in caplog.text
    assert "Port 4001 in use, trying 4002..." in caplog.text


def test_serve_runs_uvicorn_on_first_free_port(monkeypatch):
    runs = []
    monkeypatch.setattr(relay, "_port_available", lambda host, port: port != 3000)
    monkeypatch.setattr(relay.uvicorn, "run", lambda app, **kwargs: runs.append((app, kwargs)))

    relay.serve(host="127.0.0.1", port=3000)

    assert runs[0][0] is relay.app
    assert runs[0][1]["host"] == "127.0.0.1"
    assert runs[0][1]["port"] == 3001


def test_serve_exits_when_no_port_is_free(monkeypatch):
    monkeypatch.setattr(relay, "_port_available", lambda host, port: False)
    monkeypatch.setattr(relay.uvicorn, "run", lambda *args, **kwargs: pytest.fail("uvicorn should not start"))

    with pytest.raises(SystemExit) as excinfo:
        relay.serve(host="127.0.0.1", port=3000)

    assert excinfo.value.code == 1


def test_serve_exits_on_other_bind_errors(monkeypatch):
    def denied(host, port):
        raise OSError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(relay, "_port_available", denied)
    monkeypatch.setattr(relay.uvicorn, "run", lambda *args, **kwargs: pytest.fail("uvicorn should not start"))

    with pytest.raises(SystemExit) as excinfo:
        relay.serve(host="127.0.0.1", port=80)

    assert excinfo.value.code == 1
