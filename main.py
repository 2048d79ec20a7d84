import asyncio
import logging
import os

import telnyx
from fastapi import FastAPI, Request, HTTPException, status, BackgroundTasks
from fastapi.responses import PlainTextResponse

import db
from config import settings
from app.services.chatbot import get_chatbot

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)

TELNYX_PUBLIC_KEY = settings.TELNYX_PUBLIC_KEY

# Configure telnyx public key
if TELNYX_PUBLIC_KEY:
    telnyx.public_key = TELNYX_PUBLIC_KEY

app = FastAPI()

_sweep_task: asyncio.Task | None = None


def _is_sweep_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


async def _conversation_sweep_loop() -> None:
    """Drop idle conversations even when no new messages arrive."""
    while True:
        try:
            await asyncio.sleep(settings.CONVERSATION_SWEEP_SECONDS)
            await get_chatbot().store.sweep_expired()
        except asyncio.CancelledError:
            break
        except Exception:
            _LOGGER.exception("Conversation sweep failed")


@app.on_event("startup")
async def startup_event():
    # DB connections are managed lazily; tables are managed via Alembic migrations
    global _sweep_task
    if not _is_sweep_enabled():
        return
    if _sweep_task is None or _sweep_task.done():
        _sweep_task = asyncio.create_task(_conversation_sweep_loop())
        _LOGGER.info("Conversation sweep started")


@app.on_event("shutdown")
async def shutdown_event():
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None
    await db.dispose_engine()


# --------------------------------------------
# Background task: one dialog turn
# --------------------------------------------

async def process_message_background(from_num: str, text: str, is_voice_origin: bool = False):
    result = await get_chatbot().process_message(from_num, text, is_voice_origin=is_voice_origin)
    _LOGGER.info("Turn for %s ended in %s (delivered=%s)", from_num, result.state.value, result.delivered)


def _is_voice(payload: dict) -> bool:
    """Audio notes arrive already transcribed into ``text``."""
    media = payload.get("media") or []
    return any(str(m.get("content_type", "")).startswith("audio/") for m in media)


# --------------------------------------------
# Endpoints
# --------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(request: Request, background: BackgroundTasks):
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    _LOGGER.debug("[Webhook] Raw incoming payload: %s", raw_body)
    try:
        if TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            payload = event.data["payload"]
        else:  # dev mode: skip signature verification
            payload = (await request.json())["data"]["payload"]
    except Exception:
        raise HTTPException(400, "Bad signature")

    if payload.get("type") == "ping":
        return PlainTextResponse("PONG")

    # TelnyxObject -> dict if needed
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()

    sender = payload.get("from") or payload.get("from_", {})
    if hasattr(sender, "to_dict"):
        sender = sender.to_dict()
    from_num = sender.get("phone_number")
    text = (payload.get("text") or "").strip()

    if not from_num or not text:
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    background.add_task(process_message_background, from_num, text, _is_voice(payload))
    return PlainTextResponse("OK")
