"""Client for the local model server through its OpenAI-compatible API."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from openai import OpenAI

from .config import OLLAMA_API_BASE_URL
from .models import Message, ModelInfo, Settings
from .uploads import UploadService

logger = logging.getLogger(__name__)


class OllamaClient:
    def __init__(
        self,
        settings: Settings,
        uploads: UploadService,
        default_base_url: str = OLLAMA_API_BASE_URL,
    ) -> None:
        self.settings = settings
        self.uploads = uploads
        base_url = (settings.api_base_url or default_base_url).rstrip("/")
        headers = {"Authorization": settings.auth_header} if settings.auth_header else None
        # Ollama ignores the key, but the SDK requires one.
        self.client = OpenAI(base_url=f"{base_url}/v1", api_key="ollama", default_headers=headers)

    def list_models(self) -> List[ModelInfo]:
        """Models from the OpenAI-compatible ``/v1/models`` listing.

        That listing only carries ids and creation times, so only ``name`` and
        ``modified_at`` are filled; ``size``, ``digest`` and ``details`` keep
        their empty defaults.
        """
        out: List[ModelInfo] = []
        for item in self.client.models.list():
            created = getattr(item, "created", None)
            modified_at = (
                datetime.fromtimestamp(created, tz=timezone.utc).isoformat() if created else ""
            )
            out.append(ModelInfo(name=item.id, modified_at=modified_at))
        out.sort(key=lambda m: m.name)
        return out

    def _image_part(self, url: str) -> Dict[str, Any]:
        data = self.uploads.path_for(url).read_bytes()
        encoded = base64.b64encode(data).decode("ascii")
        return {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}}

    def build_messages(self, transcript: List[Message]) -> List[Dict[str, Any]]:
        """Convert a linearized transcript to chat-completion messages."""
        out: List[Dict[str, Any]] = []
        if self.settings.system:
            out.append({"role": "system", "content": self.settings.system})
        for m in transcript:
            if m.error:
                continue
            if m.images:
                parts: List[Dict[str, Any]] = [{"type": "text", "text": m.content}]
                parts.extend(self._image_part(url) for url in m.images)
                out.append({"role": m.role, "content": parts})
            else:
                out.append({"role": m.role, "content": m.content})
        return out

    def chat(self, transcript: List[Message], model: str) -> str:
        kwargs: Dict[str, Any] = {"model": model, "messages": self.build_messages(transcript)}
        for name in ("temperature", "top_p", "seed"):
            value: Optional[Any] = getattr(self.settings, name)
            if value is not None:
                kwargs[name] = value

        completion = self.client.chat.completions.create(**kwargs)
        choice = completion.choices[0] if completion.choices else None
        if choice is None or choice.message is None:
            return ""
        return (choice.message.content or "").strip()
