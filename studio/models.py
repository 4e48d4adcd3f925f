from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Wire(BaseModel):
    """Base for stored/served models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ComponentArtifact(_Wire):
    jsx: str = ""
    css: str = ""
    props: Dict[str, Any] = Field(default_factory=dict)


class ComponentVersion(ComponentArtifact):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: int
    message_id: Optional[str] = Field(default=None, alias="messageId")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")


class MessageMetadata(_Wire):
    model: Optional[str] = None
    tokens: Optional[int] = None
    processing_time: Optional[int] = Field(default=None, alias="processingTime")
    type: Optional[str] = None


class ChatMessage(_Wire):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[MessageMetadata] = None


class SessionSettings(_Wire):
    model: str = "meta-llama/llama-3.1-8b-instruct:free"
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=2000, alias="maxTokens", gt=0)


class Session(_Wire):
    id: str
    title: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    owner_id: str = Field(alias="ownerId")
    messages: List[ChatMessage] = Field(default_factory=list)
    current_component: ComponentArtifact = Field(default_factory=ComponentArtifact, alias="currentComponent")
    component_history: List[ComponentVersion] = Field(default_factory=list, alias="componentHistory")
    settings: SessionSettings = Field(default_factory=SessionSettings)
    is_active: bool = Field(default=True, alias="isActive")
    last_activity: datetime = Field(default_factory=utcnow, alias="lastActivity")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    tags: List[str] = Field(default_factory=list)

    def next_version(self) -> int:
        return len(self.component_history) + 1
