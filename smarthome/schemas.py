from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RELAY_IDS = ("relay1", "relay2", "relay3", "relay4", "relay5", "relay6")

# relay id -> (English, Thai) label, used in prompts and replies
RELAY_LABELS = {
    "relay1": ("Light", "ไฟ"),
    "relay2": ("Fan", "พัดลม"),
    "relay3": ("Air Conditioner", "แอร์"),
    "relay4": ("Water Pump", "ปั๊มน้ำ"),
    "relay5": ("Heater", "ฮีทเตอร์"),
    "relay6": ("Extra Device", "อุปกรณ์เพิ่มเติม"),
}

DEVICE_ALIASES = {
    "light": "relay1",
    "fan": "relay2",
    "ac": "relay3",
    "air_conditioner": "relay3",
    "water_pump": "relay4",
    "pump": "relay4",
    "heater": "relay5",
    "extra": "relay6",
}

IntentKind = Literal["turn_on", "turn_off", "toggle", "status", "question", "error"]
ACTION_FOR_INTENT = {"turn_on": "on", "turn_off": "off", "toggle": "toggle"}


# ---------------- device -> core ----------------
class TelemetryReading(BaseModel):
    """Payload of the sensor topic. Fields left out of the JSON stay unset."""
    temperature: float | None = None
    humidity: float | None = None
    gas_level: int | None = None


class StatusReport(BaseModel):
    relay1: bool | None = None
    relay2: bool | None = None
    relay3: bool | None = None
    relay4: bool | None = None
    relay5: bool | None = None
    relay6: bool | None = None


# ---------------- canonical state ----------------
class DeviceState(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float | None = 0.0
    humidity: float | None = 0.0
    gas_level: int | None = 0
    relays: dict[str, bool | None] = Field(default_factory=lambda: {r: False for r in RELAY_IDS})
    last_seen: datetime
    online: bool = False

    def as_payload(self) -> dict[str, Any]:
        """Flat shape served by GET /api/status."""
        out: dict[str, Any] = {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "gas_level": self.gas_level,
        }
        out.update(self.relays)
        out["last_seen"] = self.last_seen.isoformat()
        out["online"] = self.online
        return out


# ---------------- core -> device ----------------
class StructuredCommand(BaseModel):
    device: str
    action: str
    timestamp: datetime

    def to_wire(self) -> str:
        return self.model_dump_json()


# ---------------- translation ----------------
class Intent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: IntentKind = Field(alias="intent")
    target_device: str = Field(default="none", alias="device")
    reply: str = Field(default="", alias="response")
    action_needed: bool = False

    @field_validator("target_device", mode="before")
    @classmethod
    def _normalize_device(cls, v: Any) -> str:
        if v is None:
            return "none"
        if not isinstance(v, str):
            raise ValueError("device must be a string")
        key = v.strip().lower().replace(" ", "_")
        if not key or key == "none":
            return "none"
        if key in RELAY_IDS:
            return key
        if key in DEVICE_ALIASES:
            return DEVICE_ALIASES[key]
        raise ValueError(f"unknown device {v!r}")

    @model_validator(mode="after")
    def _check_actionable(self) -> "Intent":
        if self.action_needed and (self.target_device == "none" or self.kind not in ACTION_FOR_INTENT):
            raise ValueError("action_needed requires a relay target and an on/off/toggle intent")
        return self

    @property
    def action(self) -> str | None:
        return ACTION_FOR_INTENT.get(self.kind)


# ---------------- HTTP ----------------
class ControlRequest(BaseModel):
    device: str | None = None
    action: str | None = None


class ControlResponse(BaseModel):
    success: bool
    message: str
    timestamp: datetime


class ChatRequest(BaseModel):
    message: str | None = None


class ChatResponse(BaseModel):
    success: bool
    reply: str
    intent: dict[str, Any]
    command_sent: bool


class TTSRequest(BaseModel):
    text: str | None = None
    voice: str = "fable"


class SensorLogOut(BaseModel):
    id: int
    temperature: float | None
    humidity: float | None
    gas_level: int | None
    ts: datetime


class ChatMessageOut(BaseModel):
    id: int
    message: str
    reply: str | None
    ts: datetime


class VoiceRequest(BaseModel):
    text: str | None = None
