"""
Summarizer: compress older conversation turns into a running digest.

Trigger: every SUMMARY_WINDOW user turns (20, 40, 60, ...) once the log
holds more than a trivial number of messages.

Input: every message except the most recent exchange, plus the summary the
client already holds. Output: one auxiliary model call produces a new digest
(identity cues, topics, facts, preferences, decisions; ~300 words) which is
appended after the prior summary text. The append is not a merge: repeated
facts across windows stay repeated.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import httpx

from config import SUMMARY_MODEL, SUMMARY_WINDOW
from errors import UpstreamError
from providers import chat_completion, extract_chat_text

logger = logging.getLogger("amica.summarizer")

SEPARATOR = "\n\n---\n\n"
MIN_MESSAGES = 2

SUMMARY_PROMPT = (
    "Sei il modulo di memoria di AMICA. Riassumi la conversazione seguente in italiano, "
    "in massimo 300 parole, come appunti utili per continuare a parlare con la stessa persona.\n"
    "Includi:\n"
    "- chi è l'utente (nome, ruolo, contesto personale se emersi)\n"
    "- gli argomenti trattati\n"
    "- fatti e dati importanti\n"
    "- preferenze e gusti espressi\n"
    "- decisioni prese o richieste ancora aperte\n"
    "Non inventare nulla e non aggiungere commenti: scrivi solo il riassunto."
)


def count_cycles(messages: Sequence[Mapping[str, str]]) -> int:
    return sum(1 for m in messages if m.get("role") == "user")


def should_summarize(cycle_count: int, message_count: int) -> bool:
    return cycle_count > 0 and cycle_count % SUMMARY_WINDOW == 0 and message_count > MIN_MESSAGES


def combine_summaries(existing: Optional[str], new: str) -> str:
    existing = (existing or "").strip()
    new = new.strip()
    if not existing:
        return new
    if not new:
        return existing
    return existing + SEPARATOR + new


def _transcript(messages: Sequence[Mapping[str, str]]) -> str:
    lines: List[str] = []
    for m in messages:
        who = "Utente" if m.get("role") == "user" else "AMICA"
        lines.append(f"{who}: {(m.get('content') or '').strip()}")
    return "\n".join(lines)


async def summarize_conversation(
    client: httpx.AsyncClient,
    api_key: str,
    messages: Sequence[Mapping[str, str]],
    existing_summary: Optional[str] = None,
) -> Optional[str]:
    """Return the combined summary, or None when nothing could be produced."""
    older = list(messages[:-2])
    if not older:
        return None
    user_parts: List[str] = []
    if existing_summary:
        user_parts.append(f"Riassunto precedente (già salvato, non ripeterlo):\n{existing_summary.strip()}")
    user_parts.append(f"Conversazione da riassumere:\n{_transcript(older)}")
    prompt: List[Dict[str, str]] = [
        {"role": "system", "content": SUMMARY_PROMPT},
        {"role": "user", "content": "\n\n".join(user_parts)},
    ]
    try:
        data = await chat_completion(client, api_key, prompt, model=SUMMARY_MODEL, temperature=0.3, max_tokens=600)
    except (httpx.HTTPError, UpstreamError) as e:
        logger.warning("summarization failed, keeping previous summary: %s", e)
        return None
    text = extract_chat_text(data)
    if not text:
        logger.warning("summarization returned empty text")
        return None
    logger.info("summarized %d messages (%d chars)", len(older), len(text))
    return combine_summaries(existing_summary, text)


__all__ = [
    "SEPARATOR",
    "count_cycles",
    "should_summarize",
    "combine_summaries",
    "summarize_conversation",
]
