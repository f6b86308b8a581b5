from __future__ import annotations

import aiohttp
import pytest
from aioresponses import aioresponses

from download_organizer.core.config import OracleSettings
from download_organizer.core.errors import OracleCallError, OracleConfigMissingError
from download_organizer.core.models import Rule
from download_organizer.core.oracle import OracleClient, OracleVerdict, build_user_prompt, extract_text, parse_verdict

ENDPOINT = "https://llm.example.com/v1/chat/completions"
RULES = [
    Rule.from_keyword_string("Sims4", "sims4, ts4", "E:/Games/Sims4/mods/"),
    Rule.from_keyword_string("Minecraft", "minecraft, mc", "E:/Games/Minecraft/"),
]


def _settings(**overrides) -> OracleSettings:
    base = dict(enabled=True, endpoint=ENDPOINT, api_key="sk-test", model="small-model", requests_per_minute=6000)
    base.update(overrides)
    return OracleSettings(**base)


def _chat(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.parametrize(
    "text,expected",
    [
        ("{Sims4}", OracleVerdict(kind="single", names=("Sims4",))),
        ("  {minecraft}  ", OracleVerdict(kind="single", names=("Minecraft",))),
        ("Answer: {Sims4 || Minecraft}", OracleVerdict(kind="pair", names=("Sims4", "Minecraft"))),
        ("{NULL}", OracleVerdict(kind="none")),
        ("{null}", OracleVerdict(kind="none")),
        ("Sims4", OracleVerdict(kind="single", names=("Sims4",))),
    ],
)
def test_parse_verdict_accepts_documented_forms(text: str, expected: OracleVerdict) -> None:
    assert parse_verdict(text, RULES) == expected


@pytest.mark.parametrize("text", ["", "{}", "{Photos}", "{Sims4 || Sims4}", "{Sims4 || Photos}", "{A || B || C}"])
def test_parse_verdict_rejects_unusable_answers(text: str) -> None:
    assert parse_verdict(text, RULES) is None


def test_user_prompt_lists_evidence_and_folders() -> None:
    prompt = build_user_prompt("C:\\dl\\ts4-CoolMod.zip", ["https://modthesims.info/d/1", ""], [], RULES)
    assert "File name: ts4-CoolMod.zip" in prompt
    assert "- https://modthesims.info/d/1" in prompt
    assert "- (none)" in prompt
    assert "- Sims4: sims4, ts4" in prompt


def test_extract_text_shapes() -> None:
    assert extract_text(_chat("{Sims4}")) == "{Sims4}"
    assert extract_text({"content": [{"type": "text", "text": "{NULL}"}]}) == "{NULL}"
    with pytest.raises(OracleCallError):
        extract_text({"unexpected": True})


@pytest.mark.asyncio
async def test_decide_posts_chat_request() -> None:
    with aioresponses() as m:
        m.post(ENDPOINT, status=200, payload=_chat("{Sims4 || Minecraft}"))
        async with aiohttp.ClientSession() as session:
            client = OracleClient(_settings(), session=session)
            verdict = await client.decide("ts4-CoolMod.zip", ["https://a"], ["A page"], RULES)

        assert verdict == OracleVerdict(kind="pair", names=("Sims4", "Minecraft"))
        ((_, url), calls), = m.requests.items()
        assert str(url) == ENDPOINT
        kwargs = calls[0].kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["model"] == "small-model"
        assert kwargs["json"]["messages"][0]["role"] == "system"


@pytest.mark.asyncio
async def test_http_error_raises_call_error() -> None:
    with aioresponses() as m:
        m.post(ENDPOINT, status=500, body="overloaded")
        async with aiohttp.ClientSession() as session:
            client = OracleClient(_settings(), session=session)
            with pytest.raises(OracleCallError) as info:
                await client.complete("s", "u")
    assert info.value.status == 500


@pytest.mark.asyncio
async def test_connection_error_is_wrapped() -> None:
    with aioresponses() as m:
        m.post(ENDPOINT, exception=aiohttp.ClientConnectionError("refused"))
        async with aiohttp.ClientSession() as session:
            client = OracleClient(_settings(), session=session)
            with pytest.raises(OracleCallError):
                await client.complete("s", "u")


@pytest.mark.asyncio
async def test_unconfigured_client_refuses_to_call() -> None:
    client = OracleClient(_settings(api_key=""))
    assert not client.configured
    with pytest.raises(OracleConfigMissingError):
        await client.complete("s", "u")

    relative = OracleClient(_settings(endpoint="/v1/chat"))
    with pytest.raises(OracleConfigMissingError):
        await relative.complete("s", "u")
