"""Authenticated endpoints mapping one HTTP request to one runtime call."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from runtimebridge.failures import build_error, classify_runtime_failure
from runtimebridge.supervisor.api_auth import BRIDGE_API_PREFIX, get_bridge_context, require_pairing_token
from runtimebridge.supervisor.context import BridgeContext
from runtimebridge.supervisor.models import (
    NewSessionRequest,
    PromptRequest,
    RpcRequest,
    SessionNameRequest,
    SetModelRequest,
    SwitchSessionRequest,
    WebhookRequest,
)

logger = logging.getLogger("runtimebridge.supervisor.api_runtime")

router = APIRouter(prefix=BRIDGE_API_PREFIX, dependencies=[Depends(require_pairing_token)])


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=build_error(error_class="validation", error_code="REQUEST_INVALID", message=message),
    )


async def call_runtime(
    context: BridgeContext,
    command: str,
    params: Optional[Dict[str, Any]] = None,
    *,
    failure_message: str,
) -> Any:
    """Run one runtime call, turning any failure into a 502 with upstream text."""
    try:
        return await context.runtime.call(command, params or {})
    except Exception as exc:
        logger.warning("Runtime command %s failed: %s", command, exc)
        raise HTTPException(
            status_code=502,
            detail=classify_runtime_failure(exc, fallback=failure_message),
        ) from exc


@router.get("/state")
async def get_state(context: BridgeContext = Depends(get_bridge_context)):
    result = await call_runtime(context, "get_state", failure_message="Failed to read runtime state")
    return {"data": result}


@router.get("/messages")
async def get_messages(context: BridgeContext = Depends(get_bridge_context)):
    result = await call_runtime(context, "get_messages", failure_message="Failed to read runtime messages")
    return {"data": result}


@router.get("/models")
async def get_models(context: BridgeContext = Depends(get_bridge_context)):
    result = await call_runtime(
        context,
        "get_available_models",
        failure_message="Failed to read runtime model list",
    )
    return {"data": result}


@router.post("/model")
async def set_model(
    body: Optional[SetModelRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    provider = (body.provider if body else "").strip()
    model_id = (body.model_id if body else "").strip()
    if not provider or not model_id:
        raise _bad_request("Expected JSON body: { provider, modelId }")
    result = await call_runtime(
        context,
        "set_model",
        {"provider": provider, "modelId": model_id},
        failure_message="Failed to update runtime model",
    )
    return {"result": result}


@router.post("/prompt")
async def prompt(
    body: Optional[PromptRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    message = (body.message if body else "").strip()
    if not message:
        raise _bad_request("Expected JSON body: { message: string }")
    params: Dict[str, Any] = {"message": message}
    if body.images is not None:
        params["images"] = [image for image in body.images if isinstance(image, str)]
    if body.streaming_behavior:
        params["streamingBehavior"] = body.streaming_behavior
    result = await call_runtime(context, "prompt", params, failure_message="Failed to send prompt to runtime")
    return {"result": result}


@router.post("/abort")
async def abort(context: BridgeContext = Depends(get_bridge_context)):
    result = await call_runtime(context, "abort", failure_message="Failed to abort runtime generation")
    return {"result": result}


@router.post("/session/new")
async def new_session(
    body: Optional[NewSessionRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    parent_session = (body.parent_session if body else "").strip()
    params = {"parentSession": parent_session} if parent_session else {}
    result = await call_runtime(context, "new_session", params, failure_message="Failed to start new runtime session")
    return {"result": result}


@router.post("/session/switch")
async def switch_session(
    body: Optional[SwitchSessionRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    session_path = (body.session_path if body else "").strip()
    if not session_path:
        raise _bad_request("Expected JSON body: { sessionPath: string }")
    result = await call_runtime(
        context,
        "switch_session",
        {"sessionPath": session_path},
        failure_message="Failed to switch runtime session",
    )
    return {"result": result}


@router.post("/session/name")
async def set_session_name(
    body: Optional[SessionNameRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    name = (body.name if body else "").strip()
    if not name:
        raise _bad_request("Expected JSON body: { name: string }")
    result = await call_runtime(context, "set_session_name", {"name": name}, failure_message="Failed to rename runtime session")
    return {"result": result}


@router.post("/webhook")
async def webhook(
    body: Optional[WebhookRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    """Webhook-compatible prompt entry point used by external automations."""
    message = (body.message if body else "").strip()
    if not message:
        raise _bad_request("Expected JSON body: { message: string }")
    result = await call_runtime(context, "prompt", {"message": message}, failure_message="Runtime webhook call failed")
    return {"status": "ok", "result": result}


@router.post("/rpc")
async def rpc(
    body: Optional[RpcRequest] = None,
    context: BridgeContext = Depends(get_bridge_context),
):
    """Pass an arbitrary command straight through to the runtime."""
    method = (body.method if body else "").strip()
    if not method:
        raise _bad_request("Expected JSON body: { method, params? }")
    result = await call_runtime(context, method, body.params or {}, failure_message="Runtime RPC call failed")
    return {"result": result}
