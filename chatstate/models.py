"""Records for chats, messages, models and settings.

Attributes are snake_case in Python; the JSON form (HTTP and disk) uses the
camelCase keys the browser UI reads, e.g. ``parentId`` and ``currentId``.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileRef(CamelModel):
    """A non-image attachment."""
    type: str
    url: str


class Message(CamelModel):
    """One node of a conversation tree. Links are ids, never nested objects."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str = ""
    original_content: Optional[str] = None
    edited_content: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    files: List[FileRef] = Field(default_factory=list)
    parent_id: Optional[str] = None
    children_ids: List[str] = Field(default_factory=list)
    error: bool = False
    done: bool = False
    model: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class ChatHistory(CamelModel):
    """A whole conversation: the message arena plus the displayed tip."""
    messages: Dict[str, Message] = Field(default_factory=dict)
    current_id: Optional[str] = None
    title: str = ""


class ChatMeta(CamelModel):
    """Registry entry for the chat sidebar."""
    id: str
    title: str = "New Chat"
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class ModelDetails(BaseModel):
    format: str = ""
    family: str = ""
    families: Optional[List[str]] = None
    parameter_size: str = ""
    quantization_level: str = ""


class ModelInfo(BaseModel):
    """A model offered by the local model server."""
    name: str
    modified_at: str = ""
    size: int = 0
    digest: str = ""
    details: ModelDetails = Field(default_factory=ModelDetails)


class Capabilities(CamelModel):
    vision_capable: bool = False
    min_vram: Optional[str] = Field(default=None, alias="minVRAM")


class Settings(BaseModel):
    """User settings, consumed opaquely by the send path."""
    model_config = ConfigDict(populate_by_name=True)

    api_base_url: Optional[str] = Field(default=None, alias="API_BASE_URL")
    auth_header: Optional[str] = Field(default=None, alias="authHeader")
    system: Optional[str] = None
    models: Optional[List[str]] = None
    options: Optional[Dict[str, Any]] = None
    seed: Optional[int] = None
    temperature: Optional[float] = None
    repeat_penalty: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    num_ctx: Optional[int] = None
    request_format: Optional[str] = Field(default=None, alias="requestFormat")
    title_auto_generate: Optional[bool] = Field(default=None, alias="titleAutoGenerate")
    notification_enabled: Optional[bool] = Field(default=None, alias="notificationEnabled")
    response_auto_copy: Optional[bool] = Field(default=None, alias="responseAutoCopy")
