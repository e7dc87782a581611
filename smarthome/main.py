import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from openai import OpenAIError
import paho.mqtt.client as mqtt

from . import history
from .ai import SpeechUnavailable, build_translator, synthesize_speech
from .commands import CommandDispatcher
from .db import init_db
from .liveness import LivenessMonitor
from .mqtt_handler import MessageIngestor, start_mqtt
from .schemas import (
    ChatMessageOut, ChatRequest, ChatResponse, ControlRequest, ControlResponse, SensorLogOut, TTSRequest, VoiceRequest,
)
from .settings import settings
from .state import DeviceStateStore
from .utils import add_cors

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("api")

VERSION = "1.0.0"

app = FastAPI(title="Smart Home Bridge", version=VERSION)
add_cors(app)

store = DeviceStateStore()
ingestor = MessageIngestor(
    store,
    sensor_topic=settings.mqtt_topic_sensor,
    status_topic=settings.mqtt_topic_status,
    heartbeat_topic=settings.mqtt_topic_heartbeat,
    partial=settings.partial_payloads,
    on_telemetry=history.record_sensor_reading,
    on_heartbeat=history.record_heartbeat,
)
monitor = LivenessMonitor(
    store,
    window=settings.liveness_window,
    interval=settings.liveness_interval,
    on_offline=history.record_offline,
)
dispatcher = CommandDispatcher(settings.mqtt_topic_command)
translator = build_translator(settings)
mqtt_client: mqtt.Client | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)

@app.on_event("startup")
async def on_startup():
    global mqtt_client
    init_db()
    if settings.mqtt_enabled:
        try:
            mqtt_client = start_mqtt(ingestor)
        except Exception as e:
            log.error("[MQTT] failed to start: %s", e)
            mqtt_client = None
    dispatcher.attach(mqtt_client)
    monitor.start()

@app.on_event("shutdown")
async def on_shutdown():
    global mqtt_client
    await monitor.stop()
    if mqtt_client is not None:
        mqtt_client.loop_stop()
        mqtt_client.disconnect()
        mqtt_client = None
    dispatcher.attach(None)

@app.get("/")
def health():
    return {"status": "online", "service": "Smart Home Bridge", "version": VERSION, "timestamp": _now()}

@app.get("/api/status")
def get_status():
    return {"success": True, "data": store.read_snapshot().as_payload(), "timestamp": _now()}

@app.get("/api/sensors")
def get_sensors(limit: int = Query(50, ge=1, le=1000), since: str | None = None):
    since_dt = history.parse_ts(since)
    if since and since_dt is None:
        raise HTTPException(status_code=400, detail="'since' must be an ISO-8601 timestamp")
    rows = [SensorLogOut.model_validate(r, from_attributes=True) for r in history.list_sensor_logs(limit, since_dt)]
    return {"success": True, "data": rows}

@app.get("/api/history")
def get_history(limit: int = Query(20, ge=1, le=500)):
    rows = [ChatMessageOut.model_validate(r, from_attributes=True) for r in history.list_messages(limit)]
    return {"success": True, "data": rows}

@app.post("/api/control", response_model=ControlResponse)
def control(req: ControlRequest):
    device = (req.device or "").strip()
    action = (req.action or "").strip()
    if not device or not action:
        raise HTTPException(status_code=400, detail="Device and action are required")
    if not dispatcher.dispatch(device, action):
        raise HTTPException(status_code=502, detail=f"MQTT publish failed: {action} {device}")
    return ControlResponse(success=True, message=f"Command sent: {action} {device}", timestamp=_now())

@app.post("/api/chat", response_model=ChatResponse)
async def chat(req: ChatRequest):
    message = (req.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="'message' is required")

    snapshot = store.read_snapshot()
    intent = await translator.translate_async(message, snapshot)
    command_sent = dispatcher.dispatch_intent(intent)
    if intent.action_needed and not command_sent:
        log.warning("intent %s %s could not be published", intent.kind, intent.target_device)

    try:
        await asyncio.to_thread(history.record_chat, message, intent.reply)
    except Exception:
        log.exception("failed to log chat message")

    return ChatResponse(
        success=True,
        reply=intent.reply,
        intent=intent.model_dump(by_alias=True),
        command_sent=command_sent,
    )

@app.post("/api/tts")
async def tts(req: TTSRequest):
    text = (req.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="'text' is required")
    try:
        audio = await asyncio.to_thread(synthesize_speech, text, req.voice, cfg=settings)
    except SpeechUnavailable as e:
        raise HTTPException(status_code=500, detail=f"Server misconfigured: {e}")
    except OpenAIError as e:
        log.error("OpenAI TTS failed: %s", e)
        raise HTTPException(status_code=502, detail="OpenAI TTS failed")
    return Response(content=audio, media_type="audio/mpeg", headers={"Cache-Control": "no-store"})

@app.post("/api/voice")
def voice(req: VoiceRequest):
    # speech-to-text happens on the phone; echo what it recognised
    return {"success": True, "message": "Use Android STT instead", "text": req.text or ""}
