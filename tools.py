# tools.py
import re
import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

import httpx

from config import (
    MAX_URLS_PER_MESSAGE,
    SEARCH_CHAR_BUDGET,
    SEARCH_RETRIES,
    SEARCH_RETRY_DELAY,
    URL_CHAR_BUDGET,
)
from errors import UpstreamError
from providers import jina_read, jina_search

logger = logging.getLogger("amica.tools")


# ----------------- Helpers -----------------

URL_RE = re.compile(r"https?://[^\s<>\"'`]+", re.IGNORECASE)
_TRAILING = ".,;:!?)]}»\"'"


def _clean_text(s: str) -> str:
    # Keep paragraph breaks, squash the rest
    s = re.sub(r"[ \t\r\f\v]+", " ", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + " …"


def extract_urls(text: str, limit: int = MAX_URLS_PER_MESSAGE) -> List[str]:
    """Return the first ``limit`` distinct http(s) URLs in ``text``."""
    found: List[str] = []
    for m in URL_RE.finditer(text or ""):
        url = m.group(0).rstrip(_TRAILING)
        if url and url not in found:
            found.append(url)
        if len(found) >= limit:
            break
    return found


# ----------------- Content fetch -----------------

async def open_url(client: httpx.AsyncClient, url: str, max_chars: int = URL_CHAR_BUDGET) -> Optional[str]:
    """
    Fetch a text rendering of ``url``.
    Returns the text trimmed to ``max_chars`` or None on any failure. Not retried.
    """
    try:
        raw = await jina_read(client, url)
    except (httpx.HTTPError, UpstreamError) as e:
        logger.warning("open url failed for %s: %s", url, e)
        return None
    text = _clean_text(raw or "")
    if not text:
        return None
    return _truncate(text, max_chars)


async def fetch_urls(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    max_chars: int = URL_CHAR_BUDGET,
) -> List[Tuple[str, str]]:
    """Fetch up to two URLs concurrently; failed fetches are dropped."""
    picked = list(urls)[:MAX_URLS_PER_MESSAGE]
    if not picked:
        return []
    pages = await asyncio.gather(*(open_url(client, u, max_chars) for u in picked))
    return [(u, text) for u, text in zip(picked, pages) if text]


# ----------------- Search -----------------

async def web_search(
    client: httpx.AsyncClient,
    query: str,
    retries: int = SEARCH_RETRIES,
    delay: float = SEARCH_RETRY_DELAY,
    max_chars: int = SEARCH_CHAR_BUDGET,
) -> Optional[str]:
    """
    Search the web for ``query``.
    Makes at most ``1 + retries`` attempts, sleeping ``delay`` seconds between
    them on HTTP errors or non-2xx answers. Returns None once attempts run out.
    """
    query = (query or "").strip()
    if not query:
        return None
    attempts = 1 + max(0, retries)
    for attempt in range(1, attempts + 1):
        try:
            raw = await jina_search(client, query)
        except (httpx.HTTPError, UpstreamError) as e:
            logger.warning("web search attempt %d/%d failed for %r: %s", attempt, attempts, query, e)
            if attempt < attempts:
                await asyncio.sleep(delay)
            continue
        text = _clean_text(raw or "")
        if not text:
            logger.info("web search for %r returned nothing", query)
            return None
        return _truncate(text, max_chars)
    logger.warning("web search gave up after %d attempts for %r", attempts, query)
    return None


# ----------------- Prompt block -----------------

def build_web_context(
    pages: Sequence[Tuple[str, str]] = (),
    search: Optional[Tuple[str, str]] = None,
) -> Optional[str]:
    """
    Render fetched pages and/or a search result as one delimited block.
    ``pages`` holds (url, text) pairs, ``search`` a (query, text) pair.
    """
    sections: List[str] = []
    for url, text in pages:
        sections.append(f"--- Fonte: {url} ---\n{text}")
    if search:
        query, text = search
        sections.append(f'--- Ricerca web: "{query}" ---\n{text}')
    if not sections:
        return None
    return (
        "=== INFORMAZIONI DAL WEB ===\n"
        "Contenuti recuperati in tempo reale per questa domanda. "
        "Usali come base per la risposta e cita la fonte quando li utilizzi.\n\n"
        + "\n\n".join(sections)
        + "\n=== FINE INFORMAZIONI DAL WEB ==="
    )


__all__ = [
    "extract_urls",
    "open_url",
    "fetch_urls",
    "web_search",
    "build_web_context",
]
