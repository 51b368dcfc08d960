import asyncio

import httpx

from tools import build_web_context, extract_urls, fetch_urls, open_url, web_search


def test_extract_urls_keeps_first_two_and_strips_punctuation():
    text = (
        "Guarda https://example.com/a, poi (https://example.org/b) "
        "e infine https://example.net/c."
    )
    assert extract_urls(text) == ["https://example.com/a", "https://example.org/b"]


def test_extract_urls_ignores_duplicates_and_plain_text():
    assert extract_urls("nessun link qui") == []
    assert extract_urls("http://x.it http://x.it https://y.it") == ["http://x.it", "https://y.it"]


def test_open_url_truncates_to_budget(upstream):
    upstream.reader = httpx.Response(200, text="parola " * 2000)

    async def run():
        async with upstream.client() as client:
            return await open_url(client, "https://example.com", max_chars=100)

    text = asyncio.run(run())
    assert text is not None
    assert len(text) <= 102
    assert text.endswith("…")


def test_open_url_returns_none_on_failure(upstream):
    upstream.reader = httpx.Response(502, text="bad gateway")

    async def run():
        async with upstream.client() as client:
            return await open_url(client, "https://example.com")

    assert asyncio.run(run()) is None
    # no retry for page fetches
    assert len(upstream.calls_of("reader")) == 1


def test_fetch_urls_bounds_and_drops_failures(upstream):
    def reader(request):
        if "broken" in str(request.url):
            return httpx.Response(500, text="boom")
        return httpx.Response(200, text=f"pagina {request.url.path}")

    upstream.reader = reader

    async def run():
        async with upstream.client() as client:
            return await fetch_urls(client, ["https://ok.it/1", "https://broken.it/2", "https://ok.it/3"])

    pages = asyncio.run(run())
    assert [url for url, _ in pages] == ["https://ok.it/1"]
    assert len(upstream.calls_of("reader")) == 2


def test_web_search_retries_then_succeeds(upstream):
    attempts = []

    def search(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, text="Meteo Roma: sole, 24 gradi.")

    upstream.search = search

    async def run():
        async with upstream.client() as client:
            return await web_search(client, "meteo Roma oggi", delay=0)

    assert asyncio.run(run()) == "Meteo Roma: sole, 24 gradi."
    assert len(attempts) == 3


def test_web_search_gives_up_after_two_retries(upstream):
    def search(request):
        raise httpx.ConnectError("down", request=request)

    upstream.search = search
    attempts = []
    original = upstream.handler

    def counting(request):
        attempts.append(request)
        return original(request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(counting)) as client:
            return await web_search(client, "notizie", delay=0)

    assert asyncio.run(run()) is None
    assert len(attempts) == 3


def test_web_search_sends_query(upstream):
    async def run():
        async with upstream.client() as client:
            return await web_search(client, "prezzo oro oggi", delay=0)

    assert asyncio.run(run()) == "Risultati della ricerca."
    request = upstream.calls_of("search")[0]
    assert request.url.params["q"] == "prezzo oro oggi"


def test_build_web_context_marks_provenance():
    block = build_web_context(pages=[("https://a.it", "testo A")], search=("meteo", "testo B"))
    assert block.startswith("=== INFORMAZIONI DAL WEB ===")
    assert "Fonte: https://a.it" in block
    assert 'Ricerca web: "meteo"' in block
    assert build_web_context() is None
