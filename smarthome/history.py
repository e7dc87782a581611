"""SQL side of the bridge: sensor log, chat log and the device row.

These run as listeners of the ingestor/monitor and from the HTTP routes;
the in-memory store stays the source of truth for live state.
"""
from datetime import datetime, timezone

from dateutil import parser as dtparser
from sqlmodel import select

from .db import get_session
from .models import ChatMessage, DeviceRecord, SensorLog
from .schemas import TelemetryReading


def parse_ts(ts: str | None) -> datetime | None:
    if not ts:
        return None
    try:
        return dtparser.isoparse(ts)
    except (ValueError, OverflowError):
        return None

def record_sensor_reading(reading: TelemetryReading) -> None:
    with get_session() as s:
        s.add(SensorLog(temperature=reading.temperature, humidity=reading.humidity, gas_level=reading.gas_level))
        s.commit()

def record_device_status(status: str, last_seen: datetime | None = None) -> None:
    with get_session() as s:
        row = s.get(DeviceRecord, 1)
        if row is None:
            row = DeviceRecord(id=1)
        row.status = status
        if last_seen is not None:
            row.last_seen = last_seen
        s.add(row)
        s.commit()

def record_heartbeat(ts: datetime) -> None:
    record_device_status("online", ts)

def _naive_utc(ts: datetime) -> datetime:
    # sqlite hands datetimes back without tzinfo
    return ts.astimezone(timezone.utc).replace(tzinfo=None) if ts.tzinfo else ts

def record_offline(last_seen: datetime) -> None:
    """Mark the row offline unless a heartbeat newer than `last_seen` already landed."""
    with get_session() as s:
        row = s.get(DeviceRecord, 1)
        if row is not None and _naive_utc(row.last_seen) > _naive_utc(last_seen):
            return
        if row is None:
            row = DeviceRecord(id=1, last_seen=last_seen)
        row.status = "offline"
        s.add(row)
        s.commit()

def record_chat(message: str, reply: str | None) -> None:
    with get_session() as s:
        s.add(ChatMessage(message=message, reply=reply))
        s.commit()

def list_sensor_logs(limit: int = 50, since: datetime | None = None) -> list[SensorLog]:
    with get_session() as s:
        stmt = select(SensorLog)
        if since is not None:
            stmt = stmt.where(SensorLog.ts >= since)
        return list(s.exec(stmt.order_by(SensorLog.ts.desc(), SensorLog.id.desc()).limit(limit)).all())

def list_messages(limit: int = 20) -> list[ChatMessage]:
    """Latest `limit` messages, oldest first."""
    with get_session() as s:
        rows = s.exec(select(ChatMessage).order_by(ChatMessage.ts.desc(), ChatMessage.id.desc()).limit(limit)).all()
        return list(reversed(rows))

def get_device_record() -> DeviceRecord | None:
    with get_session() as s:
        return s.get(DeviceRecord, 1)
