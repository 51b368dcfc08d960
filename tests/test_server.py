import base64

import httpx
import pytest
from fastapi.testclient import TestClient

import server
from fakes import chat_reply


@pytest.fixture
def http(upstream):
    server.app.state.client = upstream.client()
    # lifespan is not entered: the fake upstream client stays in place
    return TestClient(server.app)


def test_preflight_returns_204_with_cors(http):
    for path in ("/api/chat", "/api/tts"):
        resp = http.options(path)
        assert resp.status_code == 204
        assert resp.content == b""
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "POST" in resp.headers["access-control-allow-methods"]


def test_non_post_is_rejected(http):
    resp = http.get("/api/chat")
    assert resp.status_code == 405
    assert resp.json() == {"error": "Method not allowed"}
    assert http.put("/api/tts", json={}).status_code == 405


@pytest.mark.parametrize("body", [
    b"not json",
    b"[]",
    b'{"messages": "ciao"}',
    b'{"messages": []}',
    b'{"messages": [{"role": "user", "content": 1}]}',
    b'{"messages": [{"role": "user", "content": "ok"}], "conversationSummary": 5}',
])
def test_chat_rejects_invalid_body(http, api_key, body):
    resp = http.post("/api/chat", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_chat_requires_api_key(http, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    resp = http.post("/api/chat", json={"messages": [{"role": "user", "content": "ciao"}]})
    assert resp.status_code == 500
    assert resp.json() == {"error": "OpenAI API key not configured"}


def test_chat_weather_scenario(http, upstream, api_key):
    upstream.decision = chat_reply('{"search": true, "query": "meteo Roma oggi"}')
    upstream.search = httpx.Response(200, text="Roma: sereno, 24 gradi.")
    resp = http.post("/api/chat", json={"messages": [{"role": "user", "content": "Che tempo fa a Roma oggi?"}]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"]
    assert data["webAccess"] is True
    assert data["cycleCount"] == 1
    assert data["usage"] == {"input_tokens": 12, "output_tokens": 6}
    assert "conversationSummary" not in data
    assert upstream.calls_of("responses")[0].headers["authorization"] == "Bearer sk-test"


def test_chat_greeting_scenario(http, upstream, api_key):
    resp = http.post("/api/chat", json={"messages": [{"role": "user", "content": "Ciao, come stai?"}]})
    assert resp.status_code == 200
    assert resp.json()["webAccess"] is False
    assert upstream.calls_of("search") == []


def test_chat_falls_back_to_legacy_shape(http, upstream, api_key):
    upstream.responses = httpx.Response(404, json={"error": {"message": "Unknown endpoint"}})
    resp = http.post("/api/chat", json={"messages": [{"role": "user", "content": "Ciao!"}]})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Risposta dal modello legacy."


def test_chat_passes_provider_error_through(http, upstream, api_key):
    err = {"error": {"message": "Rate limit reached", "type": "rate_limit"}}
    upstream.responses = httpx.Response(429, json=err)
    resp = http.post("/api/chat", json={"messages": [{"role": "user", "content": "Ciao!"}]})
    assert resp.status_code == 429
    assert resp.json() == {"error": "OpenAI API error", "details": err}


def test_chat_echoes_summary_between_thresholds(http, api_key):
    resp = http.post("/api/chat", json={
        "messages": [{"role": "user", "content": "Ciao!"}],
        "conversationSummary": "L'utente si chiama Giulia.",
    })
    assert resp.json()["conversationSummary"] == "L'utente si chiama Giulia."


def test_tts_returns_base64_audio(http, upstream, api_key):
    resp = http.post("/api/tts", json={"text": "x" * 5000})
    assert resp.status_code == 200
    data = resp.json()
    assert data["format"] == "mp3"
    assert base64.b64decode(data["audio"]) == b"ID3fake-mp3"
    body = upstream.body_of("speech")
    assert len(body["input"]) == 4096
    assert body["voice"] == "nova"
    assert body["response_format"] == "mp3"


@pytest.mark.parametrize("payload", [{}, {"text": ""}, {"text": 42}])
def test_tts_requires_text(http, api_key, payload):
    resp = http.post("/api/tts", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Text is required"}


def test_tts_passes_provider_status(http, upstream, api_key):
    upstream.speech = httpx.Response(401, json={"error": {"message": "bad key"}})
    resp = http.post("/api/tts", json={"text": "ciao"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "OpenAI TTS error"}


def test_health(http):
    resp = http.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
