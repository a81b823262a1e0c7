"""Account ledger and published session state."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.generation import VideoDuration, VideoFormat


class AccountSnapshot(BaseModel):
    identity: str
    email: str
    credits: int = Field(default=0, ge=0)
    subscription_active: bool = False
    next_reward_at: Optional[datetime] = None


class GeneratedVideo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt: str
    video_format: VideoFormat
    duration: VideoDuration
    video_url: str
    created_at: datetime


class LastResult(BaseModel):
    """Latest terminal result for an identity: a video URL or an error message."""

    video_url: Optional[str] = None
    error: Optional[str] = None


class SessionState(BaseModel):
    """Read-only snapshot rendered by the client. camelCase for FE contract."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    signed_in: bool = False
    identity: Optional[str] = None
    email: Optional[str] = None
    credits: int = 0
    subscription_active: bool = False
    next_reward_at: Optional[datetime] = None
    is_generating: bool = False
    latest_video_url: Optional[str] = None
    latest_error: Optional[str] = None
    message: Optional[str] = None
    history: list[GeneratedVideo] = Field(default_factory=list)


class SignInRequest(BaseModel):
    identity: str = Field(min_length=1)
    email: Optional[str] = None


class SwitchAccountRequest(BaseModel):
    identity: str = Field(min_length=1)
