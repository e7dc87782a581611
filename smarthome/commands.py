import logging
from collections.abc import Callable
from datetime import datetime, timezone

import paho.mqtt.client as mqtt

from .schemas import Intent, StructuredCommand

log = logging.getLogger("commands")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommandDispatcher:
    """Publishes one structured command per call, fire-and-forget (QoS 0).

    `dispatch` returns True once paho accepted the publish. There is no
    broker ack, no device receipt and no retry; failures come back as False.
    """

    def __init__(self, topic: str, client: mqtt.Client | None = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.topic = topic
        self.client = client
        self._clock = clock

    def attach(self, client: mqtt.Client | None) -> None:
        self.client = client

    def dispatch(self, device: str, action: str) -> bool:
        if not device or not action:
            log.warning("refusing command with missing device/action (device=%r action=%r)", device, action)
            return False
        if self.client is None:
            log.error("MQTT not initialized; dropping %s %s", action, device)
            return False

        command = StructuredCommand(device=device, action=action, timestamp=self._clock())
        payload = command.to_wire()
        try:
            info = self.client.publish(self.topic, payload, qos=0, retain=False)
        except Exception:
            log.exception("publish to %s failed", self.topic)
            return False
        # paho v2: info.rc == MQTT_ERR_SUCCESS (0) when queued
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            log.error("publish to %s failed rc=%s (%s)", self.topic, info.rc, mqtt.error_string(info.rc))
            return False

        log.info("sent command %s", payload)
        return True

    def dispatch_intent(self, intent: Intent) -> bool:
        if not intent.action_needed or intent.action is None:
            return False
        return self.dispatch(intent.target_device, intent.action)
