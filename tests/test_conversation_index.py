"""Test suite for conversation listing and identity."""

import pytest

from pet_messaging.domain.errors import ForbiddenError, NotFoundError, ValidationError
from pet_messaging.services.directory import UNKNOWN_USERNAME, UNNAMED_PET


@pytest.mark.asyncio
@pytest.mark.parametrize("a,b,pet", [("1", "2", 42), ("2", "1", 42), ("alice", "zed", 7)])
async def test_handle_ignores_participant_order(index, a, b, pet):
    assert await index.get_or_create_handle(a, b, pet) == await index.get_or_create_handle(b, a, pet)


@pytest.mark.asyncio
async def test_handle_depends_on_pet(index):
    assert await index.get_or_create_handle("1", "2", 42) != await index.get_or_create_handle("1", "2", 7)


@pytest.mark.asyncio
async def test_handle_matches_first_message(index, store):
    handle = await index.get_or_create_handle("2", "1", 42)
    message = await store.append("1", "2", 42, "Hi")
    assert message.conversation_id == handle


@pytest.mark.asyncio
async def test_handle_requires_two_users(index):
    with pytest.raises(ValidationError):
        await index.get_or_create_handle("1", "1", 42)
    with pytest.raises(ValidationError):
        await index.get_or_create_handle("", "1", 42)


@pytest.mark.asyncio
async def test_recipient_sees_new_conversation(index, store):
    """User 1 asks about Max; user 2's list shows it with one unread."""
    await store.append("1", "2", 42, "Is Max still available?")

    (summary,) = await index.list_for_user("2")

    assert summary.latest_message.content == "Is Max still available?"
    assert summary.unread_count == 1
    assert summary.other_user.id == "1"
    assert summary.other_user.username == "alice"
    assert summary.other_user.avatar_url == "https://cdn.example.org/u/1.png"
    assert summary.pet.id == 42
    assert summary.pet.name == "Max"


@pytest.mark.asyncio
async def test_sender_has_nothing_unread(index, store):
    await store.append("1", "2", 42, "Is Max still available?")
    (summary,) = await index.list_for_user("1")
    assert summary.unread_count == 0
    assert summary.other_user.username == "bob"


@pytest.mark.asyncio
async def test_list_is_sorted_by_latest_activity(index, store):
    await store.append("1", "2", 42, "About Max")
    await store.append("3", "2", 7, "About Luna")
    await store.append("2", "1", 42, "Max reply")

    summaries = await index.list_for_user("2")

    assert [s.latest_message.content for s in summaries] == ["Max reply", "About Luna"]
    assert [s.other_user.id for s in summaries] == ["1", "3"]


@pytest.mark.asyncio
async def test_conversations_without_messages_are_not_listed(index):
    await index.get_or_create_handle("1", "2", 42)
    assert await index.list_for_user("1") == []
    assert await index.list_for_user("2") == []


@pytest.mark.asyncio
async def test_missing_pet_and_user_fall_back_to_placeholders(index, store, pet_catalog, user_directory):
    await store.append("1", "2", 42, "Is Max still available?")
    pet_catalog.remove(42)
    user_directory.remove("1")

    (summary,) = await index.list_for_user("2")

    assert summary.pet.name == UNNAMED_PET
    assert summary.pet.id == 42
    assert summary.other_user.username == UNKNOWN_USERNAME
    assert summary.other_user.id == "1"


@pytest.mark.asyncio
async def test_get_conversation_checks_membership(index, store):
    message = await store.append("1", "2", 42, "Hi")

    conversation = await index.get_conversation(message.conversation_id, "2")
    assert conversation.counterpart("2") == "1"

    with pytest.raises(ForbiddenError):
        await index.get_conversation(message.conversation_id, "3")


@pytest.mark.asyncio
async def test_get_unknown_conversation(index):
    handle = await index.get_or_create_handle("1", "2", 42)
    with pytest.raises(NotFoundError):
        await index.get_conversation(handle, "1")


@pytest.mark.asyncio
async def test_conversation_exists(index, store):
    assert not await index.conversation_exists("2", "1", 42)
    await store.append("1", "2", 42, "Hi")
    assert await index.conversation_exists("2", "1", 42)
    assert not await index.conversation_exists("2", "1", 7)
