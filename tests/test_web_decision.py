import asyncio

import httpx

from fakes import chat_reply
from web_decision import SearchDecision, decide_web_search, extract_json, is_small_talk, parse_decision


def _decide(upstream, text):
    async def run():
        async with upstream.client() as client:
            return await decide_web_search(client, "sk-test", text)
    return asyncio.run(run())


def test_greeting_is_answered_without_auxiliary_call(upstream):
    decision = _decide(upstream, "Ciao, come stai?")
    assert decision == SearchDecision(search=False)
    assert upstream.calls == []


def test_small_talk_detection():
    assert is_small_talk("Grazie mille!")
    assert is_small_talk("   ")
    assert not is_small_talk("Ciao, chi ha vinto ieri la Roma?")


def test_model_elects_search(upstream):
    upstream.decision = chat_reply('{"search": true, "query": "meteo Roma oggi"}')
    decision = _decide(upstream, "Che tempo fa a Roma oggi?")
    assert decision == SearchDecision(search=True, query="meteo Roma oggi")
    body = upstream.body_of("decision")
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][-1]["content"] == "Che tempo fa a Roma oggi?"


def test_model_declines_search(upstream):
    upstream.decision = chat_reply('{"search": false}')
    assert _decide(upstream, "Scrivimi una poesia sul mare") == SearchDecision(search=False)


def test_transport_failure_fails_open(upstream):
    def broken(request):
        raise httpx.ReadTimeout("slow", request=request)

    upstream.decision = broken
    text = "Quanto costa un biglietto per il Colosseo? " * 5
    decision = _decide(upstream, text)
    assert decision.search is True
    assert decision.query == text.strip()[:100]


def test_provider_error_fails_open(upstream):
    upstream.decision = httpx.Response(429, json={"error": {"message": "rate limited"}})
    decision = _decide(upstream, "Chi è il sindaco di Milano?")
    assert decision == SearchDecision(search=True, query="Chi è il sindaco di Milano?")


def test_unparseable_decision_fails_open():
    assert parse_decision("non lo so", "Prezzo del Bitcoin") == SearchDecision(True, "Prezzo del Bitcoin")
    assert parse_decision('{"search": "forse"}', "x y") == SearchDecision(True, "x y")


def test_empty_query_falls_back_to_utterance():
    assert parse_decision('{"search": true, "query": ""}', "ultime notizie") == SearchDecision(True, "ultime notizie")


def test_extract_json_handles_fences_and_padding():
    assert extract_json('```json\n{"search": true, "query": "a"}\n```') == {"search": True, "query": "a"}
    assert extract_json('Ecco: {"search": false} fine') == {"search": False}
    assert extract_json("[1, 2]") == {}


def test_non_json_reply_fails_open(upstream):
    upstream.decision = httpx.Response(200, text="<html>gateway</html>")
    decision = _decide(upstream, "Chi ha vinto ieri la Roma?")
    assert decision == SearchDecision(search=True, query="Chi ha vinto ieri la Roma?")
