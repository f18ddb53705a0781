from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteStatus(str, Enum):
    SENT = "sent"
    WAITING = "waiting"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"
    QUEUED = "queued"

    @property
    def is_terminal(self) -> bool:
        return self in (RemoteStatus.DONE, RemoteStatus.ERROR)


class RemoteJobType(str, Enum):
    IMAGINE = "imagine"
    UPSCALE = "upscale"
    VARIATION = "variation"


class NextAction(BaseModel):
    type: str
    choices: Optional[List[int]] = None


class RemoteJob(BaseModel):
    """A remote generation job as seen by the proxy, keyed by its hash."""

    hash: str
    prompt: str = ""
    type: RemoteJobType = RemoteJobType.IMAGINE
    status: RemoteStatus = RemoteStatus.SENT
    progress: int = 0
    result_url: Optional[str] = None
    parent_hash: Optional[str] = None
    error_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StatusResponse(BaseModel):
    """Normalized body returned by the status proxy endpoint."""

    status: Optional[str] = None
    progress: float = 0
    result: Optional[Dict[str, Any]] = None
    status_reason: Optional[str] = None
    next_actions: Optional[List[Dict[str, Any]]] = None
    hash: Optional[str] = None
