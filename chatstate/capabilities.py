"""What a model can do, judged from its identifier alone."""

from __future__ import annotations

from typing import Optional, Sequence

from .errors import BadRequest
from .models import Capabilities

VISION_MODELS = ["llama3.2-vision", "llava", "bakllava"]


def is_vision_model(model: Optional[str]) -> bool:
    if not model:
        return False
    model_lower = model.lower().strip()
    base_model = model_lower.split(":")[0]
    return any(base_model == vm or model_lower.startswith(vm) for vm in VISION_MODELS)


def vram_requirement(model: Optional[str]) -> Optional[str]:
    """Advisory VRAM hint for known heavy models. Matching is case-sensitive."""
    if not model:
        return None
    if "llama3.2-vision:90b" in model:
        return "64GB+ VRAM"
    if "llama3.2-vision" in model or "llava" in model:
        return "8GB+ VRAM"
    return None


def classify(model: Optional[str]) -> Capabilities:
    return Capabilities(vision_capable=is_vision_model(model), min_vram=vram_requirement(model))


def ensure_attachments_allowed(model: Optional[str], images: Sequence[str]) -> None:
    """Reject image attachments for models that cannot see them."""
    if images and not is_vision_model(model):
        raise BadRequest(f"Model {model or '(none)'} does not accept image attachments")
