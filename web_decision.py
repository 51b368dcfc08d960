# web_decision.py
"""
Decide whether a user turn needs fresh information from the web.

A cheap auxiliary model judges the utterance and answers with
``{"search": bool, "query": "..."}``. Pure greetings are answered locally.
Any failure (transport, provider error, unreadable JSON) fails open: search
with the truncated utterance as query.
"""

from __future__ import annotations

import re
import logging
from dataclasses import dataclass
from typing import Any, Dict

import httpx
import orjson

from config import DECISION_MODEL, DECISION_QUERY_MAX_CHARS
from errors import UpstreamError
from providers import chat_completion, extract_chat_text

logger = logging.getLogger("amica.decision")


@dataclass(frozen=True)
class SearchDecision:
    search: bool
    query: str = ""


DECISION_PROMPT = (
    "Sei un classificatore. Decidi se per rispondere al messaggio dell'utente "
    "servono informazioni aggiornate o esterne prese dal web.\n"
    "Rispondi SEARCH=true per: persone, aziende, prodotti o luoghi specifici, "
    "prezzi, notizie, eventi, date, meteo, risultati sportivi, orari, "
    "domande del tipo 'chi è' / 'cos'è' su entità reali, tutto ciò che può essere cambiato di recente.\n"
    "Rispondi SEARCH=false per: saluti, chiacchiere, opinioni, consigli generici, "
    "scrittura creativa, matematica, domande su AMICA stessa.\n"
    "Se SEARCH=true scrivi una query breve (massimo 8 parole) efficace per un motore di ricerca, "
    "nella lingua più utile.\n"
    'Rispondi SOLO con JSON: {"search": true|false, "query": "..."}'
)

_SMALL_TALK = re.compile(
    r"^(?:ciao|salve|buongiorno|buonasera|buonanotte|hey|ehi|hello|hi|grazie(?: mille)?|"
    r"thanks|thank you|ok|okay|va bene|perfetto|arrivederci|a presto|bye)"
    r"(?:[\s,!.]+(?:amica|come stai|come va|tutto bene|a te|anche a te|mille))*[\s,!.?]*$",
    re.IGNORECASE,
)


def _fail_open(text: str) -> SearchDecision:
    return SearchDecision(search=True, query=text.strip()[:DECISION_QUERY_MAX_CHARS])


def is_small_talk(text: str) -> bool:
    t = (text or "").strip()
    return not t or bool(_SMALL_TALK.match(t))


def extract_json(s: str) -> Dict[str, Any]:
    """Pull a JSON object out of model text that may be fenced or padded."""
    s = (s or "").strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*|\s*```$", "", s).strip()
    try:
        obj = orjson.loads(s)
        if isinstance(obj, dict):
            return obj
    except orjson.JSONDecodeError:
        pass
    i = s.find("{")
    j = s.rfind("}")
    if i != -1 and j > i:
        try:
            obj = orjson.loads(s[i:j + 1])
            if isinstance(obj, dict):
                return obj
        except orjson.JSONDecodeError:
            pass
    return {}


def parse_decision(raw: str, text: str) -> SearchDecision:
    obj = extract_json(raw)
    flag = obj.get("search")
    if isinstance(flag, str):
        flag = {"true": True, "false": False}.get(flag.strip().lower())
    if not isinstance(flag, bool):
        logger.info("unreadable search decision %r, searching anyway", raw[:200])
        return _fail_open(text)
    if not flag:
        return SearchDecision(search=False)
    query = obj.get("query")
    query = query.strip() if isinstance(query, str) else ""
    if not query:
        return _fail_open(text)
    return SearchDecision(search=True, query=query[:DECISION_QUERY_MAX_CHARS])


async def decide_web_search(client: httpx.AsyncClient, api_key: str, text: str) -> SearchDecision:
    if is_small_talk(text):
        return SearchDecision(search=False)
    messages = [
        {"role": "system", "content": DECISION_PROMPT},
        {"role": "user", "content": text},
    ]
    try:
        data = await chat_completion(
            client,
            api_key,
            messages,
            model=DECISION_MODEL,
            temperature=0,
            max_tokens=80,
            response_format={"type": "json_object"},
        )
    except (httpx.HTTPError, UpstreamError) as e:
        logger.warning("search decision call failed, searching anyway: %s", e)
        return _fail_open(text)
    decision = parse_decision(extract_chat_text(data), text)
    logger.debug("search decision for %r: %s", text[:80], decision)
    return decision


__all__ = [
    "SearchDecision",
    "decide_web_search",
    "parse_decision",
    "extract_json",
    "is_small_talk",
]
