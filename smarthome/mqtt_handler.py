# smarthome/mqtt_handler.py
import json, time, logging
from collections.abc import Callable
from datetime import datetime
from typing import Literal

import paho.mqtt.client as mqtt
from pydantic import BaseModel, ValidationError

from .schemas import StatusReport, TelemetryReading
from .settings import settings
from .state import DeviceStateStore

log = logging.getLogger("mqtt")

HEARTBEAT_TOKEN = "alive"
# connection notices some firmwares publish on data topics
SENTINELS = frozenset({"Connected", "Disconnected"})

PartialPolicy = Literal["overwrite", "merge", "reject"]


class MessageIngestor:
    """Turns raw bus messages into store mutations.

    Transport-free: paho (or a test) just calls `on_message(topic, payload)`.
    Bad payloads are logged and dropped; nothing here raises for bad input.
    """

    def __init__(
        self,
        store: DeviceStateStore,
        *,
        sensor_topic: str = "home/sensor",
        status_topic: str = "home/status",
        heartbeat_topic: str = "home/heartbeat",
        partial: PartialPolicy = "overwrite",
        on_telemetry: Callable[[TelemetryReading], None] | None = None,
        on_heartbeat: Callable[[datetime], None] | None = None,
    ) -> None:
        self.store = store
        self.sensor_topic = sensor_topic
        self.status_topic = status_topic
        self.heartbeat_topic = heartbeat_topic
        self.partial = partial
        self.on_telemetry = on_telemetry
        self.on_heartbeat = on_heartbeat
        self.stats = {"rx_total": 0, "rx_tel": 0, "rx_status": 0, "rx_heartbeat": 0, "rx_dropped": 0}

    @property
    def topics(self) -> list[str]:
        return [self.sensor_topic, self.status_topic, self.heartbeat_topic]

    def on_message(self, topic: str, payload: bytes) -> None:
        self.stats["rx_total"] += 1
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            self._drop(topic, "payload is not utf-8", payload)
            return
        log.debug("[MQTT] raw [%s]: %s", topic, text)

        if topic == self.heartbeat_topic:
            self._heartbeat(text)
        elif topic == self.sensor_topic:
            reading = self._parse(topic, text, TelemetryReading)
            if reading is not None:
                self._telemetry(reading)
        elif topic == self.status_topic:
            report = self._parse(topic, text, StatusReport)
            if report is not None:
                self._status(report)
        else:
            log.debug("[MQTT] ignoring message on unhandled topic %s", topic)

    # ---------------- per-topic handlers ----------------
    def _heartbeat(self, text: str) -> None:
        if text != HEARTBEAT_TOKEN:
            self._drop(self.heartbeat_topic, "not a heartbeat token", text)
            return
        self.stats["rx_heartbeat"] += 1
        state = self.store.mark_heartbeat()
        log.info("[MQTT] heartbeat received")
        self._notify(self.on_heartbeat, state.last_seen)

    def _telemetry(self, reading: TelemetryReading) -> None:
        self.stats["rx_tel"] += 1
        self.store.apply_telemetry(reading, merge=self.partial == "merge")
        self._notify(self.on_telemetry, reading)

    def _status(self, report: StatusReport) -> None:
        self.stats["rx_status"] += 1
        self.store.apply_status(report, merge=self.partial == "merge")

    # ---------------- helpers ----------------
    def _parse(self, topic: str, text: str, schema: type[BaseModel]):
        if not text.strip() or text in SENTINELS:
            self._drop(topic, "non-JSON notice", text)
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            self._drop(topic, "invalid JSON", text)
            return None
        if not isinstance(data, dict):
            self._drop(topic, "JSON is not an object", text)
            return None
        try:
            parsed = schema.model_validate(data)
        except ValidationError as e:
            self._drop(topic, f"schema mismatch ({e.error_count()} error(s))", text)
            return None
        if self.partial == "reject":
            missing = set(schema.model_fields) - parsed.model_fields_set
            if missing:
                self._drop(topic, f"missing fields {sorted(missing)}", text)
                return None
        return parsed

    def _drop(self, topic: str, reason: str, payload) -> None:
        self.stats["rx_dropped"] += 1
        log.info("[MQTT] skipping message on %s: %s: %r", topic, reason, payload)

    def _notify(self, hook, arg) -> None:
        if hook is None:
            return
        try:
            hook(arg)
        except Exception:
            log.exception("[MQTT] listener %s failed", getattr(hook, "__name__", hook))


def _rc_int(rc) -> int:
    # Handles paho v2.x ReasonCode objects or plain ints
    try:
        return int(getattr(rc, "value", rc))
    except (TypeError, ValueError):
        return -1

def _rc_str(rc) -> str:
    name = getattr(rc, "getName", None)
    if callable(name):
        return f"{_rc_int(rc)}:{name()}"
    return str(getattr(rc, "value", rc))


def start_mqtt(ingestor: MessageIngestor) -> mqtt.Client:
    client = mqtt.Client(
        client_id=f"smarthome-bridge-{int(time.time())}",
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,  # paho 2.x
    )
    client.enable_logger(log)

    if settings.mqtt_username and settings.mqtt_password:
        client.username_pw_set(settings.mqtt_username, settings.mqtt_password)

    client.reconnect_delay_set(min_delay=1, max_delay=30)

    def on_connect(client, userdata, flags, reason_code, properties):
        rc = _rc_int(reason_code)
        if rc != mqtt.CONNACK_ACCEPTED:
            log.warning("[MQTT] Connect failed rc=%s. Retrying…", _rc_str(reason_code))
            return
        for topic in ingestor.topics:
            res, mid = client.subscribe(topic, qos=0)
            log.info("[MQTT] Connected. SUB %s res=%s mid=%s", topic, res, mid)

    def on_subscribe(client, userdata, mid, reason_codes, properties):
        log.debug("[MQTT] SUBACK mid=%s granted=%s", mid, [_rc_str(rc) for rc in reason_codes])
        if any(_rc_int(rc) >= 0x80 for rc in reason_codes):
            log.warning("[MQTT] subscription rejected by broker ACL (mid=%s)", mid)

    def on_disconnect(client, userdata, flags, reason_code, properties):
        log.warning("[MQTT] Disconnected rc=%s. Reconnecting…", _rc_str(reason_code))

    def on_message(client, userdata, msg):
        try:
            ingestor.on_message(msg.topic, msg.payload)
            if ingestor.stats["rx_total"] % 10 == 1:
                log.info("[MQTT] msg counts: %s", ingestor.stats)
        except Exception:
            # keep paho's network loop alive
            log.exception("[MQTT] on_message error on %s", msg.topic)

    client.on_connect = on_connect
    client.on_subscribe = on_subscribe
    client.on_disconnect = on_disconnect
    client.on_message = on_message

    log.info(
        "[MQTT] Bootstrapping host=%s port=%s user=%s topics=%s",
        settings.mqtt_host, settings.mqtt_port,
        "<set>" if settings.mqtt_username else "<none>", ingestor.topics,
    )

    client.connect(settings.mqtt_host, settings.mqtt_port, keepalive=30)
    client.loop_start()
    return client
