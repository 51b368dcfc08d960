# server.py
import base64
import logging
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager

import httpx
import orjson
from fastapi import FastAPI, Request
from fastapi.responses import Response

from config import CHAT_MODEL, FALLBACK_MODEL, TTS_MAX_CHARS, UPSTREAM_TIMEOUT, openai_api_key
from errors import (
    BadRequest,
    UpstreamError,
    error_response,
    json_response,
    method_not_allowed,
    preflight_response,
)
from logging_config import setup_logging
from orchestrator import normalize_messages, run_turn
from providers import synthesize_speech

logger = logging.getLogger("amica.server")

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    limits = httpx.Limits(max_connections=20, max_keepalive_connections=20)
    app.state.client = httpx.AsyncClient(http2=True, limits=limits, timeout=UPSTREAM_TIMEOUT)
    logger.info("AMICA backend ready (model=%s, fallback=%s)", CHAT_MODEL, FALLBACK_MODEL)
    yield
    # Shutdown
    await app.state.client.aclose()

app = FastAPI(title="AMICA", lifespan=lifespan)


async def _read_json(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    try:
        body = orjson.loads(raw) if raw else None
    except orjson.JSONDecodeError as e:
        raise BadRequest("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise BadRequest("JSON object body required")
    return body


def _client(request: Request) -> httpx.AsyncClient:
    return request.app.state.client


@app.get("/api/health")
async def health():
    return json_response({"ok": True, "model": CHAT_MODEL, "fallbackModel": FALLBACK_MODEL})


@app.api_route("/api/chat", methods=ALL_METHODS)
async def chat(request: Request) -> Response:
    if request.method == "OPTIONS":
        return preflight_response()
    if request.method != "POST":
        return method_not_allowed()

    try:
        payload = await _read_json(request)
        messages = normalize_messages(payload.get("messages"))
        summary: Optional[str] = payload.get("conversationSummary")
        if summary is not None and not isinstance(summary, str):
            raise BadRequest("conversationSummary must be a string")
    except BadRequest as e:
        return error_response(400, str(e))

    api_key = openai_api_key()
    if not api_key:
        return error_response(500, "OpenAI API key not configured")

    try:
        result = await run_turn(_client(request), api_key, messages, summary or None)
    except UpstreamError as e:
        return error_response(e.status_code, "OpenAI API error", details=e.payload)
    except httpx.HTTPError as e:
        logger.error("chat upstream request failed: %s", e)
        return error_response(502, "Upstream request failed")
    except Exception:
        logger.exception("chat API error")
        return error_response(500, "Internal server error")
    return json_response(result.to_payload())


@app.api_route("/api/tts", methods=ALL_METHODS)
async def tts(request: Request) -> Response:
    if request.method == "OPTIONS":
        return preflight_response()
    if request.method != "POST":
        return method_not_allowed()

    try:
        payload = await _read_json(request)
    except BadRequest:
        return error_response(400, "Text is required")
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return error_response(400, "Text is required")

    api_key = openai_api_key()
    if not api_key:
        return error_response(500, "OpenAI API key not configured")

    try:
        audio = await synthesize_speech(_client(request), api_key, text[:TTS_MAX_CHARS])
    except UpstreamError as e:
        return error_response(e.status_code, "OpenAI TTS error")
    except httpx.HTTPError as e:
        logger.error("tts upstream request failed: %s", e)
        return error_response(502, "Upstream request failed")
    except Exception:
        logger.exception("TTS API error")
        return error_response(500, "Internal server error")
    return json_response({"audio": base64.b64encode(audio).decode("ascii"), "format": "mp3"})


if __name__ == "__main__":
    import uvicorn
    from config import APP_HOST, APP_PORT
    uvicorn.run(
        "server:app",  # module_name:app_instance
        host=APP_HOST,
        port=APP_PORT,
        reload=False,
    )
