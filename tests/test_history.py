from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import SQLModel

from smarthome import history
from smarthome.db import engine, init_db
from smarthome.mqtt_handler import MessageIngestor
from smarthome.state import DeviceStateStore

from conftest import T0, FakeClock


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    init_db()


def test_heartbeat_and_offline_update_device_row() -> None:
    assert history.get_device_record() is None

    history.record_heartbeat(T0)
    row = history.get_device_record()
    assert row.status == "online"
    assert row.name == "ESP32_Home"
    assert row.last_seen.replace(tzinfo=None) == T0.replace(tzinfo=None)

    history.record_offline(T0)
    assert history.get_device_record().status == "offline"


def test_late_offline_notice_does_not_override_newer_heartbeat() -> None:
    history.record_heartbeat(T0 + timedelta(seconds=122))

    history.record_offline(T0)

    assert history.get_device_record().status == "online"


def test_ingestor_listeners_write_history(store: DeviceStateStore, clock: FakeClock) -> None:
    ingestor = MessageIngestor(store, on_telemetry=history.record_sensor_reading, on_heartbeat=history.record_heartbeat)

    ingestor.on_message("home/sensor", b'{"temperature": 24.5, "humidity": 58, "gas_level": 210}')
    ingestor.on_message("home/heartbeat", b"alive")

    (log,) = history.list_sensor_logs()
    assert (log.temperature, log.humidity, log.gas_level) == (24.5, 58.0, 210)
    assert history.get_device_record().status == "online"


@pytest.mark.parametrize(
    ("raw", "ok"),
    [("2026-01-01T12:00:00Z", True), ("2026-01-01", True), ("", False), (None, False), ("not a date", False)],
)
def test_parse_ts(raw, ok: bool) -> None:
    assert (history.parse_ts(raw) is not None) is ok
