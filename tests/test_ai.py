from __future__ import annotations

import json

import httpx
import openai
import pytest

from smarthome.ai import FALLBACK_REPLY, IntentTranslator, build_prompt, build_translator, parse_intent
from smarthome.schemas import DeviceState, Intent
from smarthome.settings import Settings

from conftest import T0, FakeOpenAI


def _snapshot(**kwargs) -> DeviceState:
    return DeviceState(last_seen=T0, **kwargs)


def _assert_fallback(intent: Intent) -> None:
    assert intent.kind == "error"
    assert intent.target_device == "none"
    assert intent.action_needed is False
    assert intent.reply == FALLBACK_REPLY


def test_turn_on_light_with_working_classifier() -> None:
    client = FakeOpenAI(json.dumps(
        {"intent": "turn_on", "device": "relay1", "response": "เปิดไฟแล้วครับ", "action_needed": True},
        ensure_ascii=False,
    ))
    translator = IntentTranslator(client)

    intent = translator.translate("เปิดไฟ", _snapshot())

    assert intent.kind == "turn_on"
    assert intent.target_device == "relay1"
    assert intent.action_needed is True
    assert intent.action == "on"
    assert intent.reply == "เปิดไฟแล้วครับ"


def test_request_carries_prompt_and_limits() -> None:
    client = FakeOpenAI('{"intent": "status", "device": "none", "response": "ok", "action_needed": false}')
    translator = IntentTranslator(client, model="gpt-test", timeout=3.0)

    translator.translate("สถานะอุปกรณ์", _snapshot(temperature=31.5))

    (call,) = client.completions.calls
    assert call["model"] == "gpt-test"
    assert call["timeout"] == 3.0
    assert call["max_tokens"] == 300
    assert call["response_format"] == {"type": "json_object"}
    prompt = call["messages"][0]["content"]
    assert "สถานะอุปกรณ์" in prompt
    assert "31.5" in prompt


def test_prompt_embeds_every_relay_and_examples() -> None:
    relays = {f"relay{i}": i % 2 == 0 for i in range(1, 7)}
    prompt = build_prompt("ปิดพัดลม", _snapshot(temperature=22.0, humidity=55.0, relays=relays))

    for i in range(1, 7):
        assert f"Relay {i} (" in prompt
    assert "Relay 2 (Fan/พัดลม): ON" in prompt
    assert "Relay 1 (Light/ไฟ): OFF" in prompt
    assert "Humidity: 55.0%" in prompt
    assert '"เปิดไฟ" →' in prompt
    assert '"ปิดอุปกรณ์เพิ่มเติม" →' in prompt
    assert "อุณหภูมิตอนนี้ 22.0 องศาครับ" in prompt


def test_timeout_returns_fallback() -> None:
    error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    translator = IntentTranslator(FakeOpenAI(error=error))

    _assert_fallback(translator.translate("เปิดไฟ", _snapshot()))


@pytest.mark.parametrize(
    "content",
    [
        None,
        "",
        "Sure! I turned on the light.",
        '{"intent": "dance", "device": "relay1", "response": "x", "action_needed": true}',
        '{"intent": "turn_on", "device": "toaster", "response": "x", "action_needed": true}',
        '{"intent": "status", "device": "none", "response": "x", "action_needed": true}',
        '{"intent": "turn_on", "device": "none", "response": "x", "action_needed": true}',
    ],
)
def test_unusable_answers_return_fallback(content) -> None:
    translator = IntentTranslator(FakeOpenAI(content))

    _assert_fallback(translator.translate("เปิดไฟ", _snapshot()))


def test_any_client_error_returns_fallback() -> None:
    translator = IntentTranslator(FakeOpenAI(error=RuntimeError("socket closed")))

    _assert_fallback(translator.translate("เปิดไฟ", _snapshot()))


def test_missing_client_returns_fallback() -> None:
    _assert_fallback(IntentTranslator(None).translate("เปิดไฟ", _snapshot()))
    assert build_translator(Settings(openai_api_key=None)).client is None


def test_parse_accepts_aliases_and_code_fences() -> None:
    intent = parse_intent('```json\n{"intent": "toggle", "device": "Water Pump", "response": "ok", "action_needed": true}\n```')

    assert intent.target_device == "relay4"
    assert intent.action == "toggle"


def test_parse_question_without_device() -> None:
    intent = parse_intent('{"intent": "question", "device": null, "response": "สวัสดีครับ", "action_needed": false}')

    assert intent.kind == "question"
    assert intent.target_device == "none"
    assert intent.action is None


@pytest.mark.asyncio
async def test_async_deadline_returns_fallback() -> None:
    client = FakeOpenAI('{"intent": "turn_on", "device": "relay1", "response": "x", "action_needed": true}', delay=0.5)
    translator = IntentTranslator(client, deadline=0.05)
    snapshot = _snapshot()

    intent = await translator.translate_async("เปิดไฟ", snapshot)

    _assert_fallback(intent)


@pytest.mark.asyncio
async def test_async_translation_within_deadline() -> None:
    client = FakeOpenAI('{"intent": "turn_off", "device": "fan", "response": "ปิดพัดลมแล้วครับ", "action_needed": true}')
    translator = IntentTranslator(client, deadline=5.0)

    intent = await translator.translate_async("ปิดพัดลม", _snapshot())

    assert (intent.kind, intent.target_device, intent.action) == ("turn_off", "relay2", "off")
