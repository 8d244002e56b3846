import random

import pytest

from chatstate.errors import NotFound, TreeCorrupted
from chatstate.models import ChatHistory, Message
from chatstate.tree import MessageTree, check


def user(content, **kw):
    return Message(role="user", content=content, **kw)


def assistant(content, **kw):
    return Message(role="assistant", content=content, **kw)


@pytest.fixture
def tree():
    return MessageTree(ChatHistory())


def test_append_links_parent_and_child(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello", model="llama3"))

    assert tree.get(m1).parent_id is None
    assert tree.get(m1).children_ids == [m2]
    assert tree.get(m2).parent_id == m1
    assert tree.history.current_id == m2
    check(tree.history)


def test_append_assigns_fresh_id(tree):
    msg = user("Hi")
    new_id = tree.append(None, msg)
    again = tree.append(None, msg)

    assert new_id != msg.id
    assert again != new_id
    assert len(tree.messages) == 2


def test_append_unknown_parent(tree):
    with pytest.raises(NotFound):
        tree.append("missing", user("Hi"))
    assert tree.messages == {}


def test_random_appends_stay_reciprocal(tree):
    rng = random.Random(7)
    ids = []
    for i in range(200):
        parent = rng.choice(ids + [None]) if ids else None
        ids.append(tree.append(parent, user(f"m{i}")))
        if i % 25 == 0:
            tree.edit(rng.choice(ids), f"edited {i}")

    check(tree.history)
    for msg in tree.messages.values():
        for child in msg.children_ids:
            assert tree.get(child).parent_id == msg.id


def test_linearize_is_deterministic(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello"))
    m3 = tree.append(m2, user("How are you?"))

    first = tree.linearize(m3)
    second = tree.linearize(m3)

    assert [m.id for m in first] == [m1, m2, m3]
    assert first == second
    assert tree.history.current_id == m3


def test_linearize_empty_and_unknown(tree):
    assert tree.linearize(None) == []
    with pytest.raises(NotFound):
        tree.linearize("nope")


def test_edit_leaf_in_place(tree):
    m1 = tree.append(None, user("Hi"))

    assert tree.edit(m1, "Hi there") == m1
    assert tree.edit(m1, "Hi there!") == m1

    msg = tree.get(m1)
    assert msg.content == "Hi there!"
    assert msg.edited_content == "Hi there!"
    assert msg.original_content == "Hi"
    assert len(tree.messages) == 1


def test_edit_with_children_forks(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello", model="llama3"))
    assert [m.id for m in tree.linearize(m2)] == [m1, m2]

    m3 = tree.edit(m1, "Hi there")

    assert m3 not in (m1, m2)
    fork = tree.get(m3)
    assert fork.parent_id is None
    assert fork.content == "Hi there"
    assert fork.original_content == "Hi"
    assert tree.history.current_id == m3
    assert [m.id for m in tree.linearize(m3)] == [m3]

    # the old branch is untouched
    assert tree.get(m1).content == "Hi"
    assert tree.get(m1).original_content is None
    assert tree.get(m1).children_ids == [m2]
    assert [m.id for m in tree.linearize(m2)] == [m1, m2]
    check(tree.history)


def test_fork_of_inner_message_keeps_parent_and_attachments(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello"))
    m3 = tree.append(m2, user("Look", images=["/uploads/a.png"]))
    tree.append(m3, assistant("A cat"))

    fork = tree.edit(m3, "Look closer")

    assert tree.get(fork).parent_id == m2
    assert tree.get(fork).images == ["/uploads/a.png"]
    assert tree.get(m2).children_ids == [m3, fork]
    assert tree.siblings(fork) == [m3, fork]


def test_prior_branch_reachable_by_set_current(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello"))
    tree.edit(m1, "Hi there")

    tree.set_current(m2)

    assert tree.history.current_id == m2
    assert [m.content for m in tree.linearize(tree.history.current_id)] == ["Hi", "Hello"]


def test_set_current_unknown(tree):
    m1 = tree.append(None, user("Hi"))
    with pytest.raises(NotFound):
        tree.set_current("nope")
    assert tree.history.current_id == m1


def test_switch_branch_goes_to_latest_leaf(tree):
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello"))
    m4 = tree.append(m2, user("again"))
    tree.edit(m1, "Hi there")

    assert tree.roots() == [m1, tree.history.current_id]
    assert tree.switch_branch(m1) == m4
    assert tree.history.current_id == m4


def test_check_rejects_broken_links():
    history = ChatHistory()
    tree = MessageTree(history)
    m1 = tree.append(None, user("Hi"))
    m2 = tree.append(m1, assistant("Hello"))

    history.messages[m1].children_ids.clear()
    with pytest.raises(TreeCorrupted):
        check(history)

    history.messages[m1].children_ids.append(m2)
    history.current_id = "gone"
    with pytest.raises(TreeCorrupted):
        check(history)


def test_check_rejects_cycles():
    a = Message(id="a", role="user", parent_id="b", children_ids=["b"])
    b = Message(id="b", role="assistant", parent_id="a", children_ids=["a"])
    history = ChatHistory(messages={"a": a, "b": b}, current_id="a")

    with pytest.raises(TreeCorrupted):
        check(history)


def test_check_rejects_cycle_beside_a_valid_root():
    root = Message(id="r", role="user")
    a = Message(id="a", role="user", parent_id="b", children_ids=["b"])
    b = Message(id="b", role="assistant", parent_id="a", children_ids=["a"])
    history = ChatHistory(messages={"r": root, "a": a, "b": b}, current_id="r")

    with pytest.raises(TreeCorrupted):
        check(history)


def test_check_handles_long_conversations():
    tree = MessageTree(ChatHistory())
    parent = None
    for i in range(5000):
        parent = tree.append(parent, user(f"m{i}"))

    check(tree.history)
    assert len(tree.linearize(parent)) == 5000
