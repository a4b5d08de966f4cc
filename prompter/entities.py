# prompter/entities.py
from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

PLACEHOLDER_URI = "#"


class Citation(BaseModel):
    """One grounding record returned alongside a remote answer."""
    title: str = "Grounded Reference"
    uri: str = PLACEHOLDER_URI


class GenerationResult(BaseModel):
    text: str = ""
    citations: List[Citation] = []


class Source(BaseModel):
    model_config = {"frozen": True}

    title: str
    uri: str


FALLBACK_SOURCE = Source(title="General Industry Documentation", uri=PLACEHOLDER_URI)


class Artifact(BaseModel):
    """
    The data-shape package synthesized for one query.

    `prompt` and `example` are never empty; every other text field may be "".
    `sources` always holds between 1 and 5 entries.
    """
    title: str = ""
    description: str = ""
    prompt: str
    example: str
    schema_text: str = Field(default="", alias="schema")
    interface: str = ""
    variations: List[str] = Field(default_factory=list, max_length=3)
    sources: List[Source] = Field(min_length=1, max_length=5)

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("prompt", "example")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class SavedArtifact(BaseModel):
    id: str
    saved_at: int
    artifact: Artifact


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    role: TurnRole
    text: str = ""


class PricePoint(BaseModel):
    date: str
    price: float


class MarketSnapshot(BaseModel):
    current_price: float = Field(alias="currentPrice")
    change_percent: float = Field(default=0.0, alias="changePercent")
    history: List[PricePoint] = Field(min_length=1)
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")

    model_config = {"populate_by_name": True}


class PollStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    ERROR = "error"


HintCategory = Literal["malformed", "empty", "generic"]
