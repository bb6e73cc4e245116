from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TAGS = ["Food", "Sightseeing", "Other"]

# Board fields a client may change after creation.
UPDATABLE_BOARD_FIELDS = ("title", "members", "tags")


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------

class BoardCreate(BaseModel):
    title: str = ""
    members: list[str] = Field(default_factory=list)
    device_id: str = ""    # localStorage UUID of the creating browser


class BoardCreated(BaseModel):
    board_id: str


class Board(BaseModel):
    id: str
    title: str
    members: list[str]
    tags: list[str] = Field(default_factory=lambda: list(DEFAULT_TAGS))
    created_by_device_id: str = ""
    created_at: Optional[datetime] = None    # Assigned by the store


class BoardPatch(BaseModel):
    """Partial board update. Keys outside UPDATABLE_BOARD_FIELDS are dropped."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    members: Optional[list[str]] = None
    tags: Optional[list[str]] = None

    def fields(self) -> dict:
        """Return only the fields the client actually sent."""
        return self.model_dump(include=set(UPDATABLE_BOARD_FIELDS), exclude_unset=True)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

class LinkCreate(BaseModel):
    url: str
    category: str
    added_by: str


class Link(BaseModel):
    id: str = ""                    # Assigned by the store
    url: str
    title: str = ""
    image_url: str = ""
    description: str = ""
    domain: str = ""
    category: str
    added_by: str
    reactions: dict[str, list[str]] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ReactionToggle(BaseModel):
    emoji: str
    member: str
