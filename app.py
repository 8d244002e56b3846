"""
Ollama Web UI: chat state server

- Keeps every chat as one YAML file under <DATA>/chats/<chat_id>.yaml, holding the
  whole branching message tree (images and files included).
- Editing a message that already has a reply forks a sibling branch; the old branch
  stays reachable.
- Uploaded images are stored under <DATA>/uploads and served back from /uploads.
- Talks to a local Ollama server through its OpenAI-compatible API.

Run:
  pip install -e .
  export OLLAMA_WEBUI_DATA="/absolute/path/to/data"
  export OLLAMA_API_BASE_URL="http://localhost:11434"
  uvicorn app:app --reload --port 8787
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from openai import OpenAIError
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from chatstate.backends import FileBackend
from chatstate.capabilities import classify, ensure_attachments_allowed
from chatstate.config import WEB_UI_VERSION, Config, load_config
from chatstate.errors import BadRequest, ChatStateError, NotFound
from chatstate.models import FileRef, Message, Settings
from chatstate.ollama import OllamaClient
from chatstate.registry import SessionRegistry
from chatstate.settings import SettingsStore
from chatstate.store import ChatHistoryStore
from chatstate.tree import MessageTree
from chatstate.uploads import UploadService

logger = logging.getLogger(__name__)


# ----------------------------
# Request bodies
# ----------------------------
class CreateChatReq(BaseModel):
    title: str = "New Chat"


class RenameChatReq(BaseModel):
    title: str


class SendReq(BaseModel):
    content: str
    images: List[str] = []
    files: List[FileRef] = []
    model: Optional[str] = None


class EditReq(BaseModel):
    content: str


def _title_from(content: str) -> str:
    lines = content.strip().splitlines()
    return (lines[0][:48] if lines else "") or "New Chat"


# ----------------------------
# FastAPI
# ----------------------------
def create_app(
    config: Optional[Config] = None,
    backend=None,
    model_client_factory: Optional[Callable[[Settings], OllamaClient]] = None,
) -> FastAPI:
    config = config or load_config()
    config.ensure_dirs()

    backend = backend if backend is not None else FileBackend(config.chat_dir)
    store = ChatHistoryStore(backend)
    registry = SessionRegistry(backend, store)
    uploads = UploadService(config.upload_dir)
    settings_store = SettingsStore(config.settings_path)

    if model_client_factory is None:
        def model_client_factory(settings: Settings) -> OllamaClient:
            return OllamaClient(settings, uploads, default_base_url=config.api_base_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.refresh()
        yield

    app = FastAPI(title="Ollama Web UI", lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry
    app.state.uploads = uploads
    app.mount("/uploads", StaticFiles(directory=config.upload_dir), name="uploads")

    @app.exception_handler(ChatStateError)
    async def chat_state_error(request: Request, exc: ChatStateError):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    def require_chat() -> str:
        if store.chat_id is None:
            raise NotFound("No chat selected")
        return store.chat_id

    def selected_chat():
        return {"chatId": store.chat_id, "history": store.get(), "transcript": store.transcript()}

    @app.get("/api/version")
    def api_version():
        return {"version": WEB_UI_VERSION}

    # Uploads
    @app.post("/api/upload")
    async def api_upload(request: Request):
        try:
            form = await request.form()
        except Exception as exc:
            logger.error("Error parsing form data: %s", exc)
            raise BadRequest("Failed to parse form data") from exc

        file = form.get("file")
        if file is None or not isinstance(file, UploadFile):
            raise BadRequest("No file uploaded or invalid file")

        data = await file.read()
        url = await run_in_threadpool(uploads.store, data, file.content_type)
        return {"url": url}

    # Models and settings
    @app.get("/api/models")
    async def api_models():
        client = model_client_factory(settings_store.load())
        try:
            models = await run_in_threadpool(client.list_models)
        except OpenAIError as exc:
            logger.error("Could not list models: %s", exc)
            return JSONResponse({"error": str(exc)}, status_code=502)
        return {
            "models": [
                {**m.model_dump(), "capabilities": classify(m.name).model_dump(by_alias=True)}
                for m in models
            ]
        }

    @app.get("/api/settings")
    def api_get_settings():
        return settings_store.load().model_dump(by_alias=True, exclude_none=True)

    @app.post("/api/settings")
    def api_save_settings(settings: Settings):
        return settings_store.save(settings).model_dump(by_alias=True, exclude_none=True)

    # Chats
    @app.get("/api/chats")
    def api_chats():
        return {"chats": registry.list(), "activeId": registry.active_id()}

    @app.post("/api/chats")
    async def api_create_chat(req: CreateChatReq):
        chat_id = await registry.create(req.title)
        return registry.get(chat_id)

    @app.post("/api/chats/{chat_id}/select")
    async def api_select_chat(chat_id: str):
        await registry.select(chat_id)
        return selected_chat()

    @app.patch("/api/chats/{chat_id}")
    async def api_rename_chat(chat_id: str, req: RenameChatReq):
        return await registry.rename(chat_id, req.title)

    @app.delete("/api/chats/{chat_id}")
    async def api_delete_chat(chat_id: str):
        await registry.delete(chat_id)
        return {"ok": True}

    # Selected chat
    @app.get("/api/chat")
    def api_chat():
        return selected_chat()

    @app.post("/api/chat/messages")
    async def api_send(req: SendReq):
        settings = settings_store.load()
        model = req.model or (settings.models[0] if settings.models else None)
        if not model:
            raise BadRequest("No model selected")
        ensure_attachments_allowed(model, req.images)
        for url in req.images:
            uploads.path_for(url)

        if store.chat_id is None:
            await registry.create(_title_from(req.content))
        chat_id = store.chat_id
        history = store.get()
        if not history.messages and history.title in ("", "New Chat"):
            history.title = _title_from(req.content)

        user_id, assistant_id = await store.send(
            Message(role="user", content=req.content, images=req.images, files=req.files, done=True),
            Message(role="assistant", model=model),
        )
        transcript = MessageTree(history).linearize(user_id)

        client = model_client_factory(settings)
        try:
            reply = await run_in_threadpool(client.chat, transcript, model)
        except OpenAIError as exc:
            logger.exception("Model call failed for chat %s", chat_id)
            assistant = await store.update_message(
                chat_id, assistant_id, content=str(exc), error=True, done=True
            )
        else:
            assistant = await store.update_message(chat_id, assistant_id, content=reply, done=True)

        return {"chatId": chat_id, "userMessageId": user_id, "message": assistant}

    @app.post("/api/chat/messages/{message_id}/edit")
    async def api_edit(message_id: str, req: EditReq):
        require_chat()
        new_id = await store.edit(message_id, req.content)
        return {"id": new_id, **selected_chat()}

    @app.post("/api/chat/messages/{message_id}/select")
    async def api_select_branch(message_id: str):
        require_chat()
        await store.switch_branch(message_id)
        return selected_chat()

    return app


config = load_config()
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
app = create_app(config)
