"""Pydantic request bodies for API endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from voiceforge.patterns import Feedback


class ChatBody(BaseModel):
    user_id: str
    message: str = Field(min_length=1)
    conversation_id: str | None = None
    stream: bool = False


class GenerateBody(BaseModel):
    topic: str = Field(min_length=1)
    angle: str = ""


class ExemplarIn(BaseModel):
    id: str | None = None
    text: str = Field(min_length=1)
    engagement: float | None = None
    posted_at: datetime | None = None


class AddExemplars(BaseModel):
    texts: list[ExemplarIn]


class UpdateProfile(BaseModel):
    full_name: str = ""
    headline: str = ""
    about: str = ""
    goals: list[str] = Field(default_factory=list)


class FeedbackBody(BaseModel):
    engagement: float
    feedback: Feedback
