"""WebSocket chat channel: each inbound message becomes one ``prompt`` call."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from runtimebridge.failures import error_message
from runtimebridge.supervisor.api_auth import get_bridge_context, is_connection_authorized

logger = logging.getLogger("runtimebridge.supervisor.api_ws")

WS_UNAUTHORIZED_CLOSE_CODE = 4001
RESULT_TEXT_KEYS = ("message", "output", "text", "response", "content")

router = APIRouter()


def parse_chat_payload(raw: str) -> Optional[Dict[str, Any]]:
    """Return the JSON object sent by the client, or None when unusable."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def chat_content(payload: Dict[str, Any]) -> str:
    for key in ("content", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_result_text(result: Any) -> str:
    """Flatten a runtime prompt result into display text."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in RESULT_TEXT_KEYS:
            candidate = result.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate
    return json.dumps(result)


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    context = get_bridge_context(websocket)
    await websocket.accept()
    if not await is_connection_authorized(websocket, context):
        await websocket.send_json({"type": "error", "message": "Unauthorized websocket session. Pair first."})
        await websocket.close(code=WS_UNAUTHORIZED_CLOSE_CODE, reason="Unauthorized")
        return

    async def run_prompt(content: str) -> None:
        try:
            await websocket.send_json({"type": "chunk", "content": ""})
            result = await context.runtime.call("prompt", {"message": content})
            await websocket.send_json({"type": "done", "full_response": normalize_result_text(result)})
        except WebSocketDisconnect:
            return
        except Exception as exc:
            logger.warning("WebSocket prompt failed: %s", exc)
            try:
                await websocket.send_json({"type": "error", "message": error_message(exc, "Runtime prompt failed")})
            except (WebSocketDisconnect, RuntimeError):
                return

    in_flight: set[asyncio.Task[None]] = set()
    try:
        while True:
            raw = await websocket.receive_text()
            payload = parse_chat_payload(raw)
            if payload is None:
                await websocket.send_json({"type": "error", "message": "Invalid websocket payload"})
                continue
            content = chat_content(payload)
            if not content:
                continue
            task = asyncio.create_task(run_prompt(content))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    except WebSocketDisconnect:
        logger.info("WebSocket chat client disconnected")
    finally:
        for task in list(in_flight):
            task.cancel()
