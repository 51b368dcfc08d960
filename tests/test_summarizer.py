import asyncio

import httpx

from fakes import chat_reply
from summarizer import SEPARATOR, combine_summaries, count_cycles, should_summarize, summarize_conversation


def _log(cycles):
    msgs = []
    for i in range(cycles):
        msgs.append({"role": "user", "content": f"domanda {i}"})
        msgs.append({"role": "assistant", "content": f"risposta {i}"})
    return msgs


def test_trigger_on_multiples_of_window():
    assert should_summarize(20, 39) is True
    assert should_summarize(40, 79) is True
    assert should_summarize(19, 37) is False
    assert should_summarize(21, 41) is False
    assert should_summarize(0, 10) is False


def test_trigger_needs_more_than_trivial_history():
    assert should_summarize(20, 2) is False
    assert should_summarize(20, 3) is True


def test_count_cycles_counts_user_turns():
    msgs = _log(3) + [{"role": "user", "content": "ultima"}]
    assert count_cycles(msgs) == 4


def test_combine_appends_after_separator():
    assert combine_summaries(None, "nuovo") == "nuovo"
    assert combine_summaries("vecchio", "nuovo") == "vecchio" + SEPARATOR + "nuovo"
    # no dedup: identical text is appended again
    assert combine_summaries("stesso", "stesso") == "stesso" + SEPARATOR + "stesso"


def test_summarize_excludes_latest_exchange_and_appends(upstream):
    upstream.summary = chat_reply("L'utente si chiama Marco e ama la vela.")
    msgs = _log(19) + [{"role": "user", "content": "domanda finale"}]

    async def run():
        async with upstream.client() as client:
            return await summarize_conversation(client, "sk-test", msgs, "Riassunto vecchio.")

    out = asyncio.run(run())
    assert out == "Riassunto vecchio." + SEPARATOR + "L'utente si chiama Marco e ama la vela."
    prompt = upstream.body_of("summary")["messages"][1]["content"]
    assert "Riassunto vecchio." in prompt
    assert "domanda 0" in prompt
    assert "risposta 17" in prompt
    # the most recent exchange stays out of the digest
    assert "risposta 18" not in prompt
    assert "domanda finale" not in prompt


def test_summarize_failure_returns_none(upstream):
    upstream.summary = httpx.Response(500, json={"error": {"message": "boom"}})

    async def run():
        async with upstream.client() as client:
            return await summarize_conversation(client, "sk-test", _log(20), "vecchio")

    assert asyncio.run(run()) is None


def test_summarize_non_json_reply_returns_none(upstream):
    upstream.summary = httpx.Response(200, text="<html>gateway</html>")

    async def run():
        async with upstream.client() as client:
            return await summarize_conversation(client, "sk-test", _log(20), "vecchio")

    assert asyncio.run(run()) is None
