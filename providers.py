# providers.py
"""Thin async wrappers over the third-party HTTP APIs AMICA talks to.

Every helper takes the shared ``httpx.AsyncClient`` as its first argument.
Non-2xx answers raise ``UpstreamError`` carrying the provider payload so the
endpoints can pass it through; transport failures surface as
``httpx.HTTPError``.
"""

import logging
import urllib.parse
from typing import Any, Dict, List, Optional

import httpx
import orjson

from config import (
    CHAT_MAX_TOKENS,
    CHAT_TEMPERATURE,
    JINA_API_KEY,
    JINA_READER_URL,
    JINA_SEARCH_URL,
    OPENAI_BASE_URL,
    TTS_MODEL,
    TTS_VOICE,
    UPSTREAM_TIMEOUT,
)
from errors import UpstreamError

logger = logging.getLogger("amica.providers")


def _openai_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _jina_headers() -> Dict[str, str]:
    headers = {"Accept": "text/plain", "X-Return-Format": "text"}
    if JINA_API_KEY:
        headers["Authorization"] = f"Bearer {JINA_API_KEY}"
    return headers


def _error_payload(resp: httpx.Response) -> Any:
    try:
        return orjson.loads(resp.content)
    except orjson.JSONDecodeError:
        return resp.text


def _raise_for_upstream(provider: str, resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        payload = _error_payload(resp)
        logger.warning("%s error %s: %s", provider, resp.status_code, payload)
        raise UpstreamError(provider, resp.status_code, payload)


async def _post_openai(client: httpx.AsyncClient, api_key: str, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
    resp = await client.post(
        f"{OPENAI_BASE_URL}{path}",
        content=orjson.dumps(body),
        headers=_openai_headers(api_key),
        timeout=UPSTREAM_TIMEOUT,
    )
    _raise_for_upstream("openai", resp)
    try:
        data = orjson.loads(resp.content)
    except orjson.JSONDecodeError as e:
        # e.g. a proxy error page served with 200
        logger.warning("openai returned a non-JSON body (HTTP %s): %s", resp.status_code, resp.text[:200])
        raise UpstreamError("openai", 502, resp.text[:500]) from e
    if not isinstance(data, dict):
        raise UpstreamError("openai", 502, data)
    return data


# ----------------- OpenAI -----------------

async def chat_completion(
    client: httpx.AsyncClient,
    api_key: str,
    messages: List[Dict[str, str]],
    model: str,
    temperature: float = CHAT_TEMPERATURE,
    max_tokens: Optional[int] = CHAT_MAX_TOKENS,
    response_format: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
    }
    if max_tokens:
        body["max_tokens"] = max_tokens
    if response_format:
        body["response_format"] = response_format
    return await _post_openai(client, api_key, "/chat/completions", body)


async def create_response(
    client: httpx.AsyncClient,
    api_key: str,
    input_messages: List[Dict[str, str]],
    model: str,
    temperature: float = CHAT_TEMPERATURE,
    max_output_tokens: Optional[int] = CHAT_MAX_TOKENS,
    tools: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model,
        "input": input_messages,
        "temperature": temperature,
    }
    if max_output_tokens:
        body["max_output_tokens"] = max_output_tokens
    if tools:
        body["tools"] = tools
    return await _post_openai(client, api_key, "/responses", body)


async def synthesize_speech(
    client: httpx.AsyncClient,
    api_key: str,
    text: str,
    model: str = TTS_MODEL,
    voice: str = TTS_VOICE,
    response_format: str = "mp3",
    speed: float = 1.0,
) -> bytes:
    body = {
        "model": model,
        "input": text,
        "voice": voice,
        "response_format": response_format,
        "speed": speed,
    }
    resp = await client.post(
        f"{OPENAI_BASE_URL}/audio/speech",
        content=orjson.dumps(body),
        headers=_openai_headers(api_key),
        timeout=UPSTREAM_TIMEOUT,
    )
    _raise_for_upstream("openai-tts", resp)
    return resp.content


def extract_chat_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content")
    return content.strip() if isinstance(content, str) else ""


def extract_response_text(data: Dict[str, Any]) -> str:
    text = data.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    parts: List[str] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for part in item.get("content") or []:
            if isinstance(part, dict) and part.get("type") == "output_text":
                parts.append(part.get("text") or "")
    return "".join(parts).strip()


def response_used_web(data: Dict[str, Any]) -> bool:
    return any(
        isinstance(item, dict) and item.get("type") == "web_search_call"
        for item in data.get("output") or []
    )


# ----------------- Jina -----------------

async def jina_read(client: httpx.AsyncClient, url: str) -> str:
    """Return the reader rendering of ``url`` as plain text."""
    resp = await client.get(
        f"{JINA_READER_URL}/{url}",
        headers=_jina_headers(),
        timeout=UPSTREAM_TIMEOUT,
        follow_redirects=True,
    )
    _raise_for_upstream("jina-reader", resp)
    return resp.text


async def jina_search(client: httpx.AsyncClient, query: str) -> str:
    resp = await client.get(
        f"{JINA_SEARCH_URL}/?q={urllib.parse.quote(query)}",
        headers=_jina_headers(),
        timeout=UPSTREAM_TIMEOUT,
        follow_redirects=True,
    )
    _raise_for_upstream("jina-search", resp)
    return resp.text


__all__ = [
    "chat_completion",
    "create_response",
    "synthesize_speech",
    "extract_chat_text",
    "extract_response_text",
    "response_used_web",
    "jina_read",
    "jina_search",
]
