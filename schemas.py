"""
Document and API schemas for the video sharing site

The persisted document (``db.json``) is a single ``Database`` model:

- users     -> list of User
- videos    -> video id -> VideoMetadata
- reactions -> video id -> identity key -> ReactionType

Field names are camelCase on disk and on the wire.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

COMMENT_MAX_LENGTH = 500


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReactionType(str, Enum):
    LIKE = "like"
    DISLIKE = "dislike"


class User(CamelModel):
    id: str
    username: str = Field(..., min_length=3, max_length=32)
    password_hash: str = Field(..., description="Bcrypt hash")
    profile_pic: Optional[str] = Field(None, description="Filename under the profile pictures directory")


class Comment(CamelModel):
    id: str
    user_id: str
    username: str
    text: str = Field(..., min_length=1, max_length=COMMENT_MAX_LENGTH)
    created_at: datetime


class VideoMetadata(CamelModel):
    views: int = Field(0, ge=0)
    likes: int = Field(0, ge=0)
    dislikes: int = Field(0, ge=0)
    comments: List[Comment] = Field(default_factory=list)


class Database(CamelModel):
    users: List[User] = Field(default_factory=list)
    videos: Dict[str, VideoMetadata] = Field(default_factory=dict)
    reactions: Dict[str, Dict[str, ReactionType]] = Field(default_factory=dict)

    @field_validator("users", mode="before")
    @classmethod
    def _list_or_empty(cls, value):
        return value if isinstance(value, list) else []

    @field_validator("videos", "reactions", mode="before")
    @classmethod
    def _mapping_or_empty(cls, value):
        return value if isinstance(value, dict) else {}

    def find_user(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def find_username(self, username: str) -> Optional[User]:
        wanted = username.lower()
        return next((u for u in self.users if u.username.lower() == wanted), None)


class VideoDescriptor(CamelModel):
    """One playable catalog entry. ``url`` is the playback locator."""

    id: str = Field(..., min_length=1)
    title: str
    url: str
    poster_url: Optional[str] = None
    uploaded_at: datetime

    @field_validator("uploaded_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class VideoSummary(CamelModel):
    id: str
    title: str
    url: str
    poster_url: Optional[str] = None
    views: int
    likes: int
    dislikes: int
    comments_count: int
    uploaded_at: datetime


class PublicUser(CamelModel):
    id: str
    username: str
    profile_pic_url: Optional[str] = None


# -------------------- Requests --------------------
class CredentialsRequest(BaseModel):
    username: str = ""
    password: str = ""


class ReactionRequest(BaseModel):
    type: ReactionType


class CommentRequest(BaseModel):
    text: str = ""
