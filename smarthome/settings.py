from typing import Literal

from pydantic import BaseModel
import os


def _origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS") or os.getenv("WEB_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or ""
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./smarthome.db")
    cors_origins: list[str] = _origins()  # empty -> allow any origin
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    mqtt_enabled: bool = os.getenv("MQTT_ENABLED", "1") == "1"
    mqtt_host: str = os.getenv("MQTT_HOST", "broker.hivemq.com")
    mqtt_port: int = int(os.getenv("MQTT_PORT", "1883"))
    mqtt_username: str | None = os.getenv("MQTT_USERNAME") or None
    mqtt_password: str | None = os.getenv("MQTT_PASSWORD") or None
    mqtt_topic_sensor: str = os.getenv("MQTT_TOPIC_SENSOR", "home/sensor")
    mqtt_topic_status: str = os.getenv("MQTT_TOPIC_STATUS", "home/status")
    mqtt_topic_heartbeat: str = os.getenv("MQTT_TOPIC_HEARTBEAT", "home/heartbeat")
    mqtt_topic_command: str = os.getenv("MQTT_TOPIC_COMMAND", "home/command")

    openai_api_key: str | None = os.getenv("OPENAI_API_KEY") or None
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_timeout: float = float(os.getenv("OPENAI_TIMEOUT", "15"))
    translate_deadline: float = float(os.getenv("TRANSLATE_DEADLINE", "20"))

    liveness_window: float = float(os.getenv("LIVENESS_WINDOW", "120"))
    liveness_interval: float = float(os.getenv("LIVENESS_INTERVAL", "30"))
    partial_payloads: Literal["overwrite", "merge", "reject"] = os.getenv("PARTIAL_PAYLOADS", "overwrite")  # type: ignore[assignment]

settings = Settings()
