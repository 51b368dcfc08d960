# orchestrator.py
"""One chat turn, end to end.

RECEIVE_REQUEST -> DETECT_URL_OR_SEARCH -> MAYBE_SUMMARIZE -> BUILD_PROMPT
-> CALL_MODEL (-> FALLBACK_CALL_MODEL) -> RESPOND | ERROR_RESPONSE

Nothing here keeps state between requests: the caller sends the whole
message log and the running summary every time and gets the updated summary
back.
"""

from __future__ import annotations

import abc
import datetime as _dt
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

import httpx

from config import APP_TIMEZONE, CHAT_MODEL, FALLBACK_MODEL, HISTORY_WINDOW_MESSAGES
from errors import BadRequest, UnsupportedEndpointShape, UpstreamError
from providers import (
    chat_completion,
    create_response,
    extract_chat_text,
    extract_response_text,
    response_used_web,
)
from summarizer import count_cycles, should_summarize, summarize_conversation
from tools import build_web_context, extract_urls, fetch_urls, web_search
from web_decision import SearchDecision, decide_web_search

logger = logging.getLogger("amica.turn")

EMPTY_REPLY = "Mi dispiace, non sono riuscita a elaborare una risposta."
ROLES = ("user", "assistant")

AMICA_PERSONA = """Tu sei AMICA, un'intelligenza artificiale sviluppata in Italia.

COME RAGIONI:
- Analizza ogni domanda in profondità prima di rispondere
- Considera il contesto non detto
- Se la domanda è semplice, trova la complessità nascosta
- Se è complessa, semplifica senza banalizzare

COME RISPONDI:
- Mai risposte generiche o da "assistente"
- Parla come un esperto che conversa
- Usa esempi concreti e metafore
- Sii diretto ma non freddo
- Ammetti i limiti invece di inventare

PERSONALITÀ:
- Intelligente ma non arrogante
- Profondo ma accessibile
- Italiano autentico, non tradotto

Rispondi sempre in italiano, con uno stile naturale e conversazionale."""

CAPABILITIES = """COSA PUOI FARE:
- Quando il messaggio contiene un link, ricevi il contenuto della pagina e puoi analizzarlo
- Quando servono informazioni aggiornate, ricevi i risultati di una ricerca web fatta per te
- Ricordi le conversazioni lunghe grazie a un riassunto delle parti precedenti
- Le tue risposte possono essere lette ad alta voce
Se non hai ricevuto informazioni dal web, non fingere di averle consultate."""

_WEEKDAYS = ("lunedì", "martedì", "mercoledì", "giovedì", "venerdì", "sabato", "domenica")
_MONTHS = (
    "gennaio", "febbraio", "marzo", "aprile", "maggio", "giugno",
    "luglio", "agosto", "settembre", "ottobre", "novembre", "dicembre",
)


class TurnState(enum.Enum):
    RECEIVE_REQUEST = "receive_request"
    DETECT_URL_OR_SEARCH = "detect_url_or_search"
    MAYBE_SUMMARIZE = "maybe_summarize"
    BUILD_PROMPT = "build_prompt"
    CALL_MODEL = "call_model"
    FALLBACK_CALL_MODEL = "fallback_call_model"
    RESPOND = "respond"
    ERROR_RESPONSE = "error_response"


@dataclass
class ModelReply:
    text: str
    backend: str
    usage: Optional[Dict[str, Any]] = None
    used_web: bool = False


@dataclass
class TurnResult:
    message: str
    web_access: bool
    cycle_count: int
    backend: str
    conversation_summary: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    states: List[TurnState] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": self.message,
            "webAccess": self.web_access,
            "cycleCount": self.cycle_count,
        }
        if self.conversation_summary:
            body["conversationSummary"] = self.conversation_summary
        if self.usage is not None:
            body["usage"] = self.usage
        return body


# ----------------- Input -----------------

def normalize_messages(raw: Any) -> List[Dict[str, str]]:
    """Validate the caller's message log and strip it to {role, content}."""
    if not isinstance(raw, list) or not raw:
        raise BadRequest("Messages array required")
    out: List[Dict[str, str]] = []
    for m in raw:
        if not isinstance(m, dict):
            raise BadRequest("Each message must be an object")
        role = m.get("role")
        content = m.get("content")
        if role not in ROLES:
            raise BadRequest("Message role must be 'user' or 'assistant'")
        if not isinstance(content, str):
            raise BadRequest("Message content must be a string")
        out.append({"role": role, "content": content})
    if out[-1]["role"] != "user" or not out[-1]["content"].strip():
        raise BadRequest("Last message must be a non-empty user message")
    return out


# ----------------- Prompt -----------------

def format_now_it(now: _dt.datetime) -> str:
    return (
        f"{_WEEKDAYS[now.weekday()]} {now.day} {_MONTHS[now.month - 1]} {now.year}, "
        f"ore {now:%H:%M}"
    )


def build_system_prompt(now: _dt.datetime) -> str:
    return (
        f"{AMICA_PERSONA}\n\n"
        f"DATA E ORA ATTUALI: {format_now_it(now)} (ora italiana).\n\n"
        f"{CAPABILITIES}"
    )


def build_prompt(
    messages: Sequence[Mapping[str, str]],
    summary: Optional[str] = None,
    web_context: Optional[str] = None,
    now: Optional[_dt.datetime] = None,
) -> List[Dict[str, str]]:
    """
    system prompt, running summary, last HISTORY_WINDOW_MESSAGES prior turns,
    web context block, then the new user utterance.
    """
    now = now or _dt.datetime.now(ZoneInfo(APP_TIMEZONE))
    prompt: List[Dict[str, str]] = [{"role": "system", "content": build_system_prompt(now)}]
    if summary and summary.strip():
        prompt.append({
            "role": "system",
            "content": "RIASSUNTO DELLA CONVERSAZIONE PRECEDENTE:\n" + summary.strip(),
        })
    history = list(messages[:-1])[-HISTORY_WINDOW_MESSAGES:]
    prompt.extend({"role": m["role"], "content": m["content"]} for m in history)
    if web_context:
        prompt.append({"role": "system", "content": web_context})
    last = messages[-1]
    prompt.append({"role": last["role"], "content": last["content"]})
    return prompt


# ----------------- Model backends -----------------

class ModelBackend(abc.ABC):
    """One upstream request shape. Raises UnsupportedEndpointShape on 400/404."""

    name = "base"

    @abc.abstractmethod
    async def complete(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        prompt: List[Dict[str, str]],
        web_tool: bool = False,
    ) -> ModelReply:
        ...

    def _shape_error(self, e: UpstreamError) -> UpstreamError:
        if e.status_code in (400, 404):
            return UnsupportedEndpointShape(e.provider, e.status_code, e.payload)
        return e


class ResponsesBackend(ModelBackend):
    name = "responses"

    def __init__(self, model: str = CHAT_MODEL):
        self.model = model

    async def complete(self, client, api_key, prompt, web_tool=False):
        tools = [{"type": "web_search_preview"}] if web_tool else None
        try:
            data = await create_response(client, api_key, prompt, model=self.model, tools=tools)
        except UpstreamError as e:
            raise self._shape_error(e) from e
        return ModelReply(
            text=extract_response_text(data),
            backend=self.name,
            usage=data.get("usage"),
            used_web=response_used_web(data),
        )


class ChatCompletionsBackend(ModelBackend):
    """Older, widely supported shape. Has no web tool."""

    name = "chat_completions"

    def __init__(self, model: str = FALLBACK_MODEL):
        self.model = model

    async def complete(self, client, api_key, prompt, web_tool=False):
        try:
            data = await chat_completion(client, api_key, prompt, model=self.model)
        except UpstreamError as e:
            raise self._shape_error(e) from e
        return ModelReply(text=extract_chat_text(data), backend=self.name, usage=data.get("usage"))


def default_backends() -> List[ModelBackend]:
    return [ResponsesBackend(), ChatCompletionsBackend()]


async def call_model(
    client: httpx.AsyncClient,
    api_key: str,
    prompt: List[Dict[str, str]],
    web_tool: bool = False,
    backends: Optional[Sequence[ModelBackend]] = None,
    states: Optional[List[TurnState]] = None,
) -> ModelReply:
    """Try each backend in order; only an unsupported shape moves to the next one."""
    chain = list(backends) if backends is not None else default_backends()
    last_error: Optional[UnsupportedEndpointShape] = None
    for i, backend in enumerate(chain):
        if states is not None:
            states.append(TurnState.CALL_MODEL if i == 0 else TurnState.FALLBACK_CALL_MODEL)
        try:
            return await backend.complete(client, api_key, prompt, web_tool=web_tool and i == 0)
        except UnsupportedEndpointShape as e:
            logger.info("%s endpoint rejected the request (HTTP %s), falling back", backend.name, e.status_code)
            last_error = e
    if last_error is None:
        raise RuntimeError("no model backend configured")
    raise last_error


# ----------------- Turn -----------------

async def _gather_web_context(
    client: httpx.AsyncClient,
    api_key: str,
    text: str,
) -> tuple[Optional[str], SearchDecision]:
    urls = extract_urls(text)
    if urls:
        # Links in the message win over the search decision
        pages = await fetch_urls(client, urls)
        logger.info("fetched %d/%d linked pages", len(pages), len(urls))
        return build_web_context(pages=pages), SearchDecision(search=False)

    decision = await decide_web_search(client, api_key, text)
    if not decision.search:
        return None, decision
    result = await web_search(client, decision.query)
    if result is None:
        return None, decision
    return build_web_context(search=(decision.query, result)), decision


async def run_turn(
    client: httpx.AsyncClient,
    api_key: str,
    messages: Sequence[Mapping[str, str]],
    conversation_summary: Optional[str] = None,
    now: Optional[_dt.datetime] = None,
    backends: Optional[Sequence[ModelBackend]] = None,
    states: Optional[List[TurnState]] = None,
) -> TurnResult:
    """
    Run one request/response cycle. Upstream model errors propagate after
    ERROR_RESPONSE is recorded in ``states`` (pass a list to keep the trace).
    """
    states = [] if states is None else states
    states.append(TurnState.RECEIVE_REQUEST)
    try:
        return await _run_turn(client, api_key, messages, conversation_summary, now, backends, states)
    except Exception:
        states.append(TurnState.ERROR_RESPONSE)
        raise


async def _run_turn(
    client: httpx.AsyncClient,
    api_key: str,
    messages: Sequence[Mapping[str, str]],
    conversation_summary: Optional[str],
    now: Optional[_dt.datetime],
    backends: Optional[Sequence[ModelBackend]],
    states: List[TurnState],
) -> TurnResult:
    user_text = messages[-1]["content"]

    states.append(TurnState.DETECT_URL_OR_SEARCH)
    web_context, decision = await _gather_web_context(client, api_key, user_text)

    states.append(TurnState.MAYBE_SUMMARIZE)
    cycle_count = count_cycles(messages)
    summary = conversation_summary
    if should_summarize(cycle_count, len(messages)):
        summary = await summarize_conversation(client, api_key, messages, conversation_summary) or conversation_summary

    states.append(TurnState.BUILD_PROMPT)
    prompt = build_prompt(messages, summary=summary, web_context=web_context, now=now)

    web_tool = decision.search and web_context is None
    reply = await call_model(client, api_key, prompt, web_tool=web_tool, backends=backends, states=states)

    states.append(TurnState.RESPOND)
    result = TurnResult(
        message=reply.text or EMPTY_REPLY,
        web_access=web_context is not None or reply.used_web,
        cycle_count=cycle_count,
        backend=reply.backend,
        conversation_summary=summary,
        usage=reply.usage,
        states=states,
    )
    logger.info(
        "turn done: cycles=%d web=%s backend=%s summary=%s",
        result.cycle_count, result.web_access, result.backend, bool(summary),
    )
    return result


__all__ = [
    "TurnState",
    "ModelReply",
    "TurnResult",
    "ModelBackend",
    "ResponsesBackend",
    "ChatCompletionsBackend",
    "normalize_messages",
    "build_prompt",
    "build_system_prompt",
    "call_model",
    "run_turn",
]
