"""Pairing endpoints and the bearer-token dependency guarding sensitive routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from starlette.requests import HTTPConnection

from runtimebridge.failures import build_error
from runtimebridge.supervisor.context import BridgeContext
from runtimebridge.supervisor.models import PairRequest
from runtimebridge.supervisor.pairing import (
    REASON_ALREADY_PAIRED,
    REASON_INVALID_CODE,
    REASON_LOCKED,
)

logger = logging.getLogger("runtimebridge.supervisor.api_auth")

BRIDGE_API_PREFIX = "/bridge-api"
UNAUTHORIZED_MESSAGE = (
    f"Unauthorized - pair first via POST {BRIDGE_API_PREFIX}/pair, "
    "then send Authorization: Bearer <token>"
)

router = APIRouter(prefix=BRIDGE_API_PREFIX)


def get_bridge_context(connection: HTTPConnection) -> BridgeContext:
    """Return the context the app factory attached to ``app.state``."""
    return connection.app.state.bridge


def client_key_from_request(connection: HTTPConnection) -> str:
    """Best-effort client identity: first forwarded-for hop, else socket host."""
    forwarded = connection.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    if connection.client is not None and connection.client.host:
        return connection.client.host
    return "unknown"


def extract_bearer_token(connection: HTTPConnection) -> str:
    auth_header = connection.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token
    return (connection.query_params.get("token") or "").strip()


async def is_connection_authorized(connection: HTTPConnection, context: BridgeContext) -> bool:
    status = await context.pairing.status()
    if not status.pairing_required:
        return True
    return await context.pairing.is_authenticated(extract_bearer_token(connection))


async def require_pairing_token(
    request: Request,
    context: BridgeContext = Depends(get_bridge_context),
) -> None:
    """Dependency rejecting requests without a valid bearer token."""
    if await is_connection_authorized(request, context):
        return
    raise HTTPException(
        status_code=401,
        detail=build_error(
            error_class="auth",
            error_code="AUTH_UNAUTHORIZED",
            message=UNAUTHORIZED_MESSAGE,
        ),
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.get("/auth/status")
async def auth_status(context: BridgeContext = Depends(get_bridge_context)):
    status = await context.pairing.status()
    return {"data": status.as_dict()}


@router.post("/pair")
async def pair(
    request: Request,
    body: Optional[PairRequest] = None,
    x_pairing_code: Optional[str] = Header(None),
    context: BridgeContext = Depends(get_bridge_context),
):
    """Exchange the pending pairing code for a bearer token."""
    code = (body.code if body is not None else "").strip() or (x_pairing_code or "").strip()
    if not code:
        raise HTTPException(
            status_code=400,
            detail=build_error(
                error_class="validation",
                error_code="PAIR_CODE_MISSING",
                message="Missing pairing code. Pass `code` in JSON body or X-Pairing-Code header.",
            ),
        )

    result = await context.pairing.try_pair(code, client_key_from_request(request))
    if result.ok:
        return {
            "data": {
                "token": result.token,
                "token_type": "Bearer",
                "message": (
                    "Save this token and pass it as Authorization: Bearer <token> "
                    f"for {BRIDGE_API_PREFIX} requests."
                ),
            }
        }

    if result.reason == REASON_LOCKED:
        retry_after = result.retry_after_seconds or 0
        raise HTTPException(
            status_code=423,
            detail=build_error(
                error_class="auth",
                error_code="PAIR_LOCKED",
                message=f"Too many invalid attempts. Retry in {retry_after} seconds.",
                retry_after_seconds=retry_after,
            ),
            headers={"Retry-After": str(retry_after)},
        )
    if result.reason == REASON_INVALID_CODE:
        raise HTTPException(
            status_code=401,
            detail=build_error(
                error_class="auth",
                error_code="PAIR_INVALID_CODE",
                message="Invalid pairing code.",
            ),
        )
    if result.reason == REASON_ALREADY_PAIRED:
        raise HTTPException(
            status_code=409,
            detail=build_error(
                error_class="auth",
                error_code="PAIR_ALREADY_PAIRED",
                message="Runtime already paired. Reset token storage to pair again.",
            ),
        )
    raise HTTPException(
        status_code=409,
        detail=build_error(
            error_class="auth",
            error_code="PAIR_DISABLED",
            message="Pairing is disabled.",
        ),
    )
