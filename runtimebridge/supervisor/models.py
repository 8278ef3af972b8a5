import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from runtimebridge.contracts import NOTIFICATION_KINDS


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RuntimeStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERRORED = "errored"


@dataclass(frozen=True)
class Notification:
    """Ephemeral supervisor message fanned out to stream subscribers."""

    kind: str
    payload: Dict[str, Any]
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if self.kind not in NOTIFICATION_KINDS:
            raise ValueError(f"unsupported notification kind: {self.kind}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "payload": self.payload, "timestamp": self.timestamp}


@dataclass
class PendingRequest:
    """In-flight call awaiting its correlated response line."""

    id: str
    command: str
    future: "asyncio.Future[Any]"
    timer: asyncio.TimerHandle
    deadline: float


class _CamelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PairRequest(_CamelBody):
    code: str = ""


class SetModelRequest(_CamelBody):
    provider: str = ""
    model_id: str = Field("", alias="modelId")


class PromptRequest(_CamelBody):
    message: str = ""
    images: Optional[List[Any]] = None
    streaming_behavior: Optional[str] = Field(None, alias="streamingBehavior")


class NewSessionRequest(_CamelBody):
    parent_session: str = Field("", alias="parentSession")


class SwitchSessionRequest(_CamelBody):
    session_path: str = Field("", alias="sessionPath")


class SessionNameRequest(_CamelBody):
    name: str = ""


class WebhookRequest(_CamelBody):
    message: str = ""


class RpcRequest(_CamelBody):
    method: str = ""
    params: Optional[Dict[str, Any]] = None
