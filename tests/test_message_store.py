"""Test suite for the in-memory message store."""

from uuid import uuid4

import pytest
from structlog.testing import capture_logs

from pet_messaging.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from pet_messaging.domain.models import conversation_id_for
from pet_messaging.repositories import memory
from pet_messaging.repositories.memory import InMemoryMessageStore


@pytest.mark.asyncio
async def test_append_assigns_server_fields(store):
    """The store assigns id, timestamp and conversation."""
    message = await store.append("1", "2", 42, "Is Max still available?")

    assert message.id >= 1
    assert message.created_at is not None
    assert message.read_at is None
    assert message.conversation_id == conversation_id_for("1", "2", 42)
    assert message.sender_id == "1"
    assert message.recipient_id == "2"


@pytest.mark.asyncio
async def test_append_trims_content(store):
    message = await store.append("1", "2", 42, "  hello there \n")
    assert message.content == "hello there"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
async def test_append_rejects_blank_content(store, content):
    with pytest.raises(ValidationError):
        await store.append("1", "2", 42, content)


@pytest.mark.asyncio
async def test_append_rejects_message_to_self(store):
    with pytest.raises(ValidationError):
        await store.append("1", "1", 42, "talking to myself")


@pytest.mark.asyncio
async def test_append_rejects_unknown_pet(store):
    with pytest.raises(NotFoundError):
        await store.append("1", "2", 999, "Which pet?")


@pytest.mark.asyncio
async def test_conversation_is_materialized_by_first_message(store):
    conversation_id = conversation_id_for("1", "2", 42)
    assert await store.get_conversation(conversation_id) is None

    message = await store.append("2", "1", 42, "Hello")
    conversation = await store.get_conversation(conversation_id)

    assert conversation is not None
    assert conversation.participants == ("1", "2")
    assert conversation.pet_id == 42
    assert conversation.last_message.id == message.id


@pytest.mark.asyncio
async def test_either_participant_writes_to_the_same_conversation(store):
    first = await store.append("1", "2", 42, "Hi")
    reply = await store.append("2", "1", 42, "Hello!")
    other_pet = await store.append("1", "2", 7, "And Luna?")

    assert first.conversation_id == reply.conversation_id
    assert other_pet.conversation_id != first.conversation_id


@pytest.mark.asyncio
async def test_list_is_oldest_first_in_id_order(store):
    """Messages come back in the order the store accepted them."""
    contents = [f"Message {i}" for i in range(10)]
    for i, content in enumerate(contents):
        if i % 2:
            await store.append("2", "1", 42, content)
        else:
            await store.append("1", "2", 42, content)

    conversation_id = conversation_id_for("1", "2", 42)
    messages = await store.list_by_conversation(conversation_id, "1")

    assert [m.content for m in messages] == contents
    ids = [m.id for m in messages]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)
    created = [m.created_at for m in messages]
    assert created == sorted(created)


@pytest.mark.asyncio
async def test_pagination_with_before_cursor(store):
    for i in range(5):
        await store.append("1", "2", 42, f"Message {i}")
    conversation_id = conversation_id_for("1", "2", 42)

    latest = await store.list_by_conversation(conversation_id, "2", limit=2)
    assert [m.content for m in latest] == ["Message 3", "Message 4"]

    older = await store.list_by_conversation(conversation_id, "2", before=latest[0].id, limit=2)
    assert [m.content for m in older] == ["Message 1", "Message 2"]

    oldest = await store.list_by_conversation(conversation_id, "2", before=older[0].id, limit=2)
    assert [m.content for m in oldest] == ["Message 0"]


@pytest.mark.asyncio
async def test_pagination_with_after_cursor(store):
    sent = [await store.append("1", "2", 42, f"Message {i}") for i in range(5)]
    conversation_id = conversation_id_for("1", "2", 42)

    newer = await store.list_by_conversation(conversation_id, "2", after=sent[1].id, limit=2)
    assert [m.content for m in newer] == ["Message 2", "Message 3"]

    rest = await store.list_by_conversation(conversation_id, "2", after=newer[-1].id, limit=2)
    assert [m.content for m in rest] == ["Message 4"]

    assert await store.list_by_conversation(conversation_id, "2", after=sent[-1].id) == []


@pytest.mark.asyncio
async def test_cursor_is_stable_under_concurrent_inserts(store):
    for i in range(3):
        await store.append("1", "2", 42, f"Message {i}")
    conversation_id = conversation_id_for("1", "2", 42)
    page = await store.list_by_conversation(conversation_id, "2", limit=2)

    await store.append("2", "1", 42, "Newer reply")
    older = await store.list_by_conversation(conversation_id, "2", before=page[0].id, limit=2)

    assert [m.content for m in older] == ["Message 0"]


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -1, 201])
async def test_list_rejects_out_of_range_limit(store, limit):
    await store.append("1", "2", 42, "Hi")
    with pytest.raises(ValidationError):
        await store.list_by_conversation(conversation_id_for("1", "2", 42), "1", limit=limit)


@pytest.mark.asyncio
async def test_unknown_conversation_is_not_found(store):
    with pytest.raises(NotFoundError):
        await store.list_by_conversation(uuid4(), "1")
    with pytest.raises(NotFoundError):
        await store.mark_read(uuid4(), "1")


@pytest.mark.asyncio
async def test_non_participant_is_forbidden(store):
    """Outsiders can neither read nor acknowledge a conversation."""
    message = await store.append("1", "2", 42, "Private")

    with pytest.raises(ForbiddenError):
        await store.list_by_conversation(message.conversation_id, "3")
    with pytest.raises(ForbiddenError):
        await store.mark_read(message.conversation_id, "3")


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(store):
    for content in ["One", "Two", "Three"]:
        message = await store.append("1", "2", 42, content)

    assert await store.mark_read(message.conversation_id, "2") == 3
    assert await store.mark_read(message.conversation_id, "2") == 0


@pytest.mark.asyncio
async def test_mark_read_only_touches_messages_addressed_to_reader(store):
    await store.append("1", "2", 42, "From alice")
    await store.append("1", "2", 42, "Still alice")
    reply = await store.append("2", "1", 42, "From bob")

    assert await store.mark_read(reply.conversation_id, "2") == 2
    assert await store.count_unread("1", reply.conversation_id) == 1
    assert await store.mark_read(reply.conversation_id, "1") == 1


@pytest.mark.asyncio
async def test_read_at_is_never_moved(store):
    first = await store.append("1", "2", 42, "First")
    await store.mark_read(first.conversation_id, "2")
    (read_first,) = await store.list_by_conversation(first.conversation_id, "2")

    await store.append("1", "2", 42, "Second")
    await store.mark_read(first.conversation_id, "2")
    messages = await store.list_by_conversation(first.conversation_id, "2")

    assert messages[0].read_at == read_first.read_at
    assert messages[1].read_at >= read_first.read_at


@pytest.mark.asyncio
async def test_returned_messages_are_copies(store):
    message = await store.append("1", "2", 42, "Hi")
    message.content = "tampered"

    (stored,) = await store.list_by_conversation(message.conversation_id, "1")
    assert stored.content == "Hi"


@pytest.mark.asyncio
async def test_resubmitted_client_id_returns_original_message(store):
    first = await store.append("1", "2", 42, "Can I visit tomorrow?", client_id="c-1")
    again = await store.append("1", "2", 42, "Can I visit tomorrow?", client_id="c-1")

    assert again.id == first.id
    messages = await store.list_by_conversation(first.conversation_id, "1")
    assert len(messages) == 1
    assert await store.count_unread("2") == 1


@pytest.mark.asyncio
async def test_reused_client_id_with_other_content_conflicts(store):
    await store.append("1", "2", 42, "Original", client_id="c-1")
    with pytest.raises(ConflictError):
        await store.append("1", "2", 42, "Something else", client_id="c-1")


@pytest.mark.asyncio
async def test_client_ids_are_scoped_to_sender(store):
    mine = await store.append("1", "2", 42, "Hello", client_id="same")
    theirs = await store.append("2", "1", 42, "Hello", client_id="same")
    assert mine.id != theirs.id


def test_conversation_ids_do_not_depend_on_user_id_separators():
    assert conversation_id_for("a\x1fb", "c", 42) != conversation_id_for("a", "b\x1fc", 42)
    assert conversation_id_for("a,b", "c", 42) != conversation_id_for("a", "b,c", 42)
    assert conversation_id_for("1", "2", 42) != conversation_id_for("1", "2", 7)


@pytest.mark.asyncio
async def test_users_with_separator_characters_get_separate_conversations(store):
    first = await store.append("a\x1fb", "c", 42, "Hello")
    second = await store.append("a", "b\x1fc", 42, "Hi")

    assert first.conversation_id != second.conversation_id
    with pytest.raises(ForbiddenError):
        await store.list_by_conversation(first.conversation_id, "a")
    assert [m.content for m in await store.list_by_conversation(second.conversation_id, "a")] == ["Hi"]


@pytest.mark.asyncio
async def test_append_never_writes_into_another_pairs_conversation(store, monkeypatch):
    shared = uuid4()
    monkeypatch.setattr(memory, "conversation_id_for", lambda a, b, pet_id: shared)
    await store.append("1", "2", 42, "Hi")

    with pytest.raises(ConflictError):
        await store.append("1", "3", 42, "Sneaking in")
    with pytest.raises(ConflictError):
        await store.append("1", "2", 7, "Wrong pet")

    messages = await store.list_by_conversation(shared, "2")
    assert [(m.sender_id, m.content) for m in messages] == [("1", "Hi")]
    assert await store.count_unread("3") == 0


def test_store_without_pet_catalog_warns():
    with capture_logs() as logs:
        InMemoryMessageStore()

    assert {"event": "pet_existence_check_disabled", "log_level": "warning"} in logs
