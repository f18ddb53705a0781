from enum import Enum
from typing import List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field

from common.job_schema import NextAction


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    ORIGINAL = "original"
    UPSCALE = "upscale"
    VARIATION = "variation"


class Pending(BaseModel):
    status: Literal[JobStatus.PENDING] = JobStatus.PENDING
    progress: int = 0


class Completed(BaseModel):
    status: Literal[JobStatus.COMPLETED] = JobStatus.COMPLETED
    url: str
    actions: List[NextAction] = []

    @property
    def progress(self) -> int:
        return 100


class Failed(BaseModel):
    status: Literal[JobStatus.FAILED] = JobStatus.FAILED
    reason: str
    # last progress seen before the failure
    progress: int = 0


JobState = Union[Pending, Completed, Failed]


class Job(BaseModel):
    id: str
    prompt: str
    hash: Optional[str] = None
    state: JobState = Field(default_factory=Pending, discriminator="status")
    kind: JobKind = JobKind.ORIGINAL
    parent_id: Optional[str] = None
    choice: Optional[int] = None
    # last failed upscale/variation request made from this job
    action_error: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return self.status != JobStatus.PENDING

    @property
    def progress(self) -> int:
        return self.state.progress

    @property
    def image_url(self) -> Optional[str]:
        return self.state.url if isinstance(self.state, Completed) else None

    @property
    def actions(self) -> List[NextAction]:
        return self.state.actions if isinstance(self.state, Completed) else []

    @property
    def error(self) -> Optional[str]:
        return self.state.reason if isinstance(self.state, Failed) else None


class ActionKey(NamedTuple):
    """Identifies one in-flight upscale/variation request."""

    job_id: str
    kind: JobKind
    choice: int
