"""Chat state core for the Ollama web UI.

This package holds the branching message tree, the selected-chat store, the
session registry, image uploads and the model capability classifier.
"""

from .backends import FileBackend, MemoryBackend
from .capabilities import classify, ensure_attachments_allowed, is_vision_model, vram_requirement
from .errors import BadRequest, ChatStateError, NotFound, StaleResult, StorageFailure, TreeCorrupted
from .models import ChatHistory, ChatMeta, FileRef, Message, ModelInfo, Settings
from .registry import SessionRegistry
from .store import ChatHistoryStore
from .tree import MessageTree, check
from .uploads import UploadService
