from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Record(BaseModel):
    """Row from the managed database. Unknown columns pass through untouched."""

    model_config = ConfigDict(extra="allow")


class Profile(Record):
    id: str
    username: str
    gender: Optional[Literal["male", "female", "other"]] = None
    rating: Optional[float] = None
    avatar_url: Optional[str] = None


class Analysis(Record):
    id: str
    user_id: Optional[str] = None
    front_image_url: Optional[str] = None
    analysis_text: Optional[str] = None
    face_rating: Optional[float] = None
    hair_rating: Optional[float] = None
    teeth_rating: Optional[float] = None
    body_rating: Optional[float] = None
    overall_rating: Optional[float] = None


class Comment(Record):
    id: str
    content: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    profiles: Optional[Profile] = None


class Reaction(Record):
    id: str
    type: Literal["like", "helpful", "insightful"]
    user_id: Optional[str] = None


class Post(Record):
    id: str
    user_id: str
    created_at: datetime
    type: Literal["analysis", "before_after"] = "analysis"
    content: Optional[str] = None
    analysis_id: Optional[str] = None
    profiles: Optional[Profile] = None
    analyses: Optional[Analysis] = None
    before_analysis: Optional[Analysis] = None
    after_analysis: Optional[Analysis] = None
    comments: list[Comment] = []
    reactions: list[Reaction] = []

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("comments", "reactions", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return [] if v is None else v


ConnectionStatus = Literal["pending", "accepted", "rejected"]


class Connection(Record):
    id: str
    user1_id: str
    user2_id: str
    status: ConnectionStatus


class Notification(Record):
    id: str
    type: Literal["connection_request", "connection_accepted", "connection_rejected"]
    data: dict = {}
    read: bool = False
    created_at: Optional[datetime] = None


class ModerationResult(BaseModel):
    is_acceptable: bool
    reason: Optional[str] = None


class RankedPost(BaseModel):
    post: Post
    score: float
