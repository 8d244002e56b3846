import asyncio

import pytest
import yaml

from chatstate.backends import FileBackend
from chatstate.errors import NotFound, StorageFailure
from chatstate.models import ChatHistory, FileRef, Message
from chatstate.tree import MessageTree


def sample_history():
    history = ChatHistory(title="Cats")
    tree = MessageTree(history)
    m1 = tree.append(
        None,
        Message(
            role="user",
            content="look",
            images=["/uploads/a.png"],
            files=[FileRef(type="pdf", url="/uploads/b.pdf")],
        ),
    )
    tree.append(m1, Message(role="assistant", content="a cat", model="llava", done=True))
    return history


def test_put_get_roundtrip_is_verbatim(tmp_path):
    backend = FileBackend(tmp_path)
    history = sample_history()

    async def scenario():
        meta = await backend.put("c1", history)
        assert meta.title == "Cats"
        return await backend.get("c1")

    assert asyncio.run(scenario()) == history


def test_file_uses_camel_case_keys(tmp_path):
    backend = FileBackend(tmp_path)
    history = sample_history()
    asyncio.run(backend.put("c1", history))

    data = yaml.safe_load((tmp_path / "c1.yaml").read_text(encoding="utf-8"))
    assert data["history"]["currentId"] == history.current_id
    assert data["meta"]["id"] == "c1"
    first = next(iter(data["history"]["messages"].values()))
    assert "childrenIds" in first and "parentId" in first
    assert first["images"] == ["/uploads/a.png"]


def test_created_at_survives_rewrites(tmp_path):
    backend = FileBackend(tmp_path)

    async def scenario():
        first = await backend.put("c1", ChatHistory())
        second = await backend.put("c1", ChatHistory(title="later"))
        return first, second

    first, second = asyncio.run(scenario())
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert second.title == "later"


def test_list_skips_unreadable_files(tmp_path):
    backend = FileBackend(tmp_path)
    asyncio.run(backend.put("good", ChatHistory(title="ok")))
    (tmp_path / "bad.yaml").write_text("meta: [unclosed", encoding="utf-8")

    metas = asyncio.run(backend.list())
    assert [m.id for m in metas] == ["good"]


def test_missing_and_invalid_ids(tmp_path):
    backend = FileBackend(tmp_path)
    assert asyncio.run(backend.get("nothing")) is None
    with pytest.raises(NotFound):
        asyncio.run(backend.get("../escape"))
    with pytest.raises(NotFound):
        asyncio.run(backend.delete("nothing"))


def test_corrupt_file_is_storage_failure(tmp_path):
    backend = FileBackend(tmp_path)
    (tmp_path / "c1.yaml").write_text("history: {messages: [1, 2]}\n", encoding="utf-8")
    with pytest.raises(StorageFailure):
        asyncio.run(backend.get("c1"))


def test_overlapping_puts_to_one_chat(tmp_path):
    backend = FileBackend(tmp_path)
    histories = [ChatHistory(title=f"v{i}") for i in range(4)]

    async def scenario():
        for _ in range(30):
            await asyncio.gather(*(backend.put("c1", h) for h in histories))
        return await backend.get("c1")

    assert asyncio.run(scenario()).title == "v3"
    assert [p.name for p in tmp_path.iterdir()] == ["c1.yaml"]
