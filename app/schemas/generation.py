"""Generation job schemas and webhook payloads (camelCase on the wire)."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class VideoFormat(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"


class VideoDuration(int, Enum):
    SHORT = 10
    LONG = 15

    @property
    def cost(self) -> int:
        return DURATION_COSTS[self]


DURATION_COSTS = {
    VideoDuration.SHORT: 50,
    VideoDuration.LONG: 70,
}


class GenerationState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SCHEDULED_WAIT = "scheduled_wait"
    POLLING = "polling"
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_ERROR = "resolved_error"
    RESOLVED_TIMEOUT = "resolved_timeout"


class PendingJob(BaseModel):
    """Everything needed to resume polling after a restart."""

    job_id: str
    identity: Optional[str] = None
    prompt: str
    video_format: VideoFormat
    duration: VideoDuration
    image_b64: str
    started_at: datetime
    reserved_cost: int = Field(ge=0)


class SubmissionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    prompt: str
    video_category: str
    aspect_ratio: VideoFormat
    start_image: str
    duration: int
    callback_url: str


class StatusResponse(BaseModel):
    """Status webhook body. Accepts the current and legacy field names."""

    model_config = ConfigDict(extra="ignore")

    video_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("urlVideo", "URL VIDEO"),
    )
    error_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("errorMessage", "ERROR"),
    )

    @field_validator("video_url", "error_message", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def is_terminal(self) -> bool:
        return self.video_url is not None or self.error_message is not None


class GenerationAccepted(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    state: GenerationState
    reserved_cost: int
    started_at: datetime
