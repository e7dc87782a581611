from __future__ import annotations
"""
Operator text -> structured Intent via OpenAI chat completions, plus a TTS proxy.

Env:
  OPENAI_API_KEY=...          # required; without it every translation falls back
  OPENAI_MODEL=gpt-4o-mini    # chat model used for intent classification
  OPENAI_TIMEOUT=15           # per-request client timeout (seconds)
  TRANSLATE_DEADLINE=20       # hard deadline for translate_async (seconds)

Return:
  IntentTranslator.translate(text, snapshot)        -> Intent (never raises)
  IntentTranslator.translate_async(text, snapshot)  -> Intent (deadline-bounded)
  synthesize_speech(text, voice)                    -> bytes (mp3)
"""

import asyncio
import json
import logging
import re
from typing import Any

from openai import APITimeoutError, BadRequestError, OpenAI, OpenAIError
from pydantic import ValidationError

from .schemas import RELAY_IDS, RELAY_LABELS, DeviceState, Intent
from .settings import Settings

log = logging.getLogger("ai")

FALLBACK_REPLY = "ขออภัย ไม่สามารถประมวลผลคำสั่งได้ในขณะนี้"


def fallback_intent() -> Intent:
    return Intent(kind="error", target_device="none", reply=FALLBACK_REPLY, action_needed=False)


# ---------------- prompt construction ----------------
# phrase -> expected answer; the classifier learns the domain only from these
PROMPT_EXAMPLES: tuple[tuple[str, dict[str, Any]], ...] = tuple(
    (f"{verb}{thai}", {
        "intent": intent,
        "device": relay_id,
        "response": f"{verb}{thai}แล้วครับ",
        "action_needed": True,
    })
    for relay_id, (_, thai) in RELAY_LABELS.items()
    for verb, intent in (("เปิด", "turn_on"), ("ปิด", "turn_off"))
)


def _on_off(value: bool | None, on: str = "ON", off: str = "OFF") -> str:
    return on if value else off


def _status_examples(snapshot: DeviceState) -> list[tuple[str, dict[str, Any]]]:
    summary = ", ".join(
        f"{RELAY_LABELS[r][1]}: {_on_off(snapshot.relays.get(r), 'เปิด', 'ปิด')}" for r in RELAY_IDS
    )
    summary += f", อุณหภูมิ: {snapshot.temperature}°C, ความชื้น: {snapshot.humidity}%"
    return [
        ("อุณหภูมิเท่าไร", {"intent": "status", "device": "none",
                            "response": f"อุณหภูมิตอนนี้ {snapshot.temperature} องศาครับ", "action_needed": False}),
        ("ความชื้นเท่าไร", {"intent": "status", "device": "none",
                            "response": f"ความชื้นตอนนี้ {snapshot.humidity}% ครับ", "action_needed": False}),
        ("สถานะอุปกรณ์", {"intent": "status", "device": "none", "response": summary, "action_needed": False}),
    ]


def build_prompt(text: str, snapshot: DeviceState) -> str:
    lines = [
        "You are a smart home assistant. Analyze this Thai command and return a JSON response.",
        "",
        "Current device status:",
        f"- Temperature: {snapshot.temperature}°C",
        f"- Humidity: {snapshot.humidity}%",
        f"- Gas Level: {snapshot.gas_level}",
    ]
    for i, relay_id in enumerate(RELAY_IDS, start=1):
        english, thai = RELAY_LABELS[relay_id]
        lines.append(f"- Relay {i} ({english}/{thai}): {_on_off(snapshot.relays.get(relay_id))}")
    lines += [
        "",
        f"User command: {json.dumps(text, ensure_ascii=False)}",
        "",
        "Return JSON with:",
        "{",
        '  "intent": "turn_on|turn_off|toggle|status|question",',
        '  "device": "relay1|relay2|relay3|relay4|relay5|relay6|light|fan|ac|air_conditioner|water_pump|pump|heater|extra|none",',
        '  "response": "Thai response message",',
        '  "action_needed": true/false',
        "}",
        "",
        "Examples:",
    ]
    for phrase, answer in (*PROMPT_EXAMPLES, *_status_examples(snapshot)):
        lines.append(f'- "{phrase}" → {json.dumps(answer, ensure_ascii=False)}')
    return "\n".join(lines)


# ---------------- response parsing ----------------
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_intent(raw: str | None) -> Intent:
    """Parse a completion into an Intent. Raises ValueError/ValidationError on junk."""
    text = (raw or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text:
        raise ValueError("empty completion")
    return Intent.model_validate_json(text)


# ---------------- translator ----------------
class IntentTranslator:
    def __init__(
        self,
        client: OpenAI | None,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 15.0,
        deadline: float = 20.0,
        max_tokens: int = 300,
        temperature: float = 0.3,
    ) -> None:
        self.client = client
        self.model = model
        self.timeout = timeout
        self.deadline = deadline
        self.max_tokens = max_tokens
        self.temperature = temperature

    def translate(self, text: str, snapshot: DeviceState) -> Intent:
        if self.client is None:
            log.warning("OPENAI_API_KEY missing; using fallback intent")
            return fallback_intent()

        prompt = build_prompt(text, snapshot)
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
            raw = completion.choices[0].message.content
            log.info("AI response: %s", raw)
            return parse_intent(raw)
        except APITimeoutError:
            log.warning("classifier timed out after %ss; using fallback", self.timeout)
        except BadRequestError as e:
            log.error("classifier rejected request: %s", getattr(e, "message", e))
        except OpenAIError as e:
            log.error("classifier call failed: %s", e)
        except (ValidationError, ValueError) as e:
            log.warning("classifier answer does not fit the intent schema: %s", e)
        except Exception:
            log.exception("unexpected classifier failure")
        return fallback_intent()

    async def translate_async(self, text: str, snapshot: DeviceState) -> Intent:
        """`translate` off the event loop, cut off at `deadline` seconds."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.translate, text, snapshot), timeout=self.deadline)
        except asyncio.TimeoutError:
            log.warning("translation exceeded %ss deadline; using fallback", self.deadline)
            return fallback_intent()


def build_translator(cfg: Settings) -> IntentTranslator:
    api_key = (cfg.openai_api_key or "").strip()
    client = OpenAI(api_key=api_key, timeout=cfg.openai_timeout, max_retries=0) if api_key else None
    return IntentTranslator(client, model=cfg.openai_model, timeout=cfg.openai_timeout, deadline=cfg.translate_deadline)


# ---------------- text to speech ----------------
class SpeechUnavailable(RuntimeError):
    pass


def synthesize_speech(text: str, voice: str = "fable", *, client: OpenAI | None = None, cfg: Settings | None = None) -> bytes:
    """mp3 bytes from OpenAI speech. OpenAIError propagates to the caller."""
    if client is None:
        api_key = ((cfg.openai_api_key if cfg else None) or "").strip()
        if not api_key:
            raise SpeechUnavailable("OPENAI_API_KEY missing")
        client = OpenAI(api_key=api_key, timeout=cfg.openai_timeout, max_retries=0)
    resp = client.audio.speech.create(model="tts-1", input=text, voice=voice, response_format="mp3")
    return resp.content
