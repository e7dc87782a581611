from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class DeviceRecord(SQLModel, table=True):
    id: int = Field(default=1, primary_key=True)
    name: str = Field(default="ESP32_Home")
    status: str = Field(default="offline")  # online|offline
    last_seen: datetime = Field(default_factory=_utcnow)

class SensorLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    gas_level: Optional[int] = None
    ts: datetime = Field(default_factory=_utcnow, index=True)

class ChatMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message: str
    reply: Optional[str] = None
    ts: datetime = Field(default_factory=_utcnow, index=True)
