from __future__ import annotations

import os
import tempfile
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

# settings are read at import time; pin them before smarthome is imported
_TMP = tempfile.mkdtemp(prefix="smarthome-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["MQTT_ENABLED"] = "0"
os.environ.pop("OPENAI_API_KEY", None)

import paho.mqtt.client as mqtt  # noqa: E402
import pytest  # noqa: E402

from smarthome.state import DeviceStateStore  # noqa: E402

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeMqttClient:
    """Records publishes; `rc` / `error` control the outcome."""

    def __init__(self, rc: int = mqtt.MQTT_ERR_SUCCESS, error: Exception | None = None) -> None:
        self.rc = rc
        self.error = error
        self.published: list[dict[str, Any]] = []

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False):
        if self.error is not None:
            raise self.error
        self.published.append({"topic": topic, "payload": payload, "qos": qos, "retain": retain})
        return SimpleNamespace(rc=self.rc, mid=len(self.published))


class FakeCompletions:
    def __init__(self, content: str | None = None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.content = content
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any):
        self.calls.append(kwargs)
        if self.delay:
            import time

            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, content: str | None = None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.completions = FakeCompletions(content, error, delay)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> DeviceStateStore:
    return DeviceStateStore(clock=clock)


@pytest.fixture
def mqtt_client() -> FakeMqttClient:
    return FakeMqttClient()
