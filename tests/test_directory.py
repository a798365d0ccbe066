"""Test suite for directory lookups and notifications."""

import pytest
from pydantic import ValidationError

from pet_messaging.config import Settings
from pet_messaging.domain.models import PetProfile, UserProfile
from pet_messaging.services.directory import (
    CachedPetCatalog,
    CachedUserDirectory,
    InMemoryPetCatalog,
    InMemoryUserDirectory,
)
from pet_messaging.services.notifications import NotificationCenter, NotificationKind


@pytest.mark.asyncio
async def test_cached_directory_serves_stale_entries_within_ttl():
    source = InMemoryUserDirectory([UserProfile(id="1", username="alice")])
    cached = CachedUserDirectory(source, ttl=60)

    assert (await cached.get_user("1")).username == "alice"
    source.add(UserProfile(id="1", username="alice_renamed"))
    assert (await cached.get_user("1")).username == "alice"

    cached.invalidate("1")
    assert (await cached.get_user("1")).username == "alice_renamed"


@pytest.mark.asyncio
async def test_cached_catalog_expires_entries():
    source = InMemoryPetCatalog([PetProfile(id=42, name="Max")])
    cached = CachedPetCatalog(source, ttl=0)

    assert (await cached.get_pet(42)).name == "Max"
    source.remove(42)
    assert await cached.get_pet(42) is None


@pytest.mark.asyncio
async def test_username_lookup():
    directory = CachedUserDirectory(InMemoryUserDirectory([UserProfile(id="2", username="bob")]))
    assert (await directory.find_by_username("bob")).id == "2"
    assert await directory.find_by_username("nobody") is None


def test_notification_fan_out_survives_bad_listener():
    center = NotificationCenter()
    seen = []

    def broken(notification):
        raise RuntimeError("render failed")

    center.subscribe(broken)
    unsubscribe = center.subscribe(seen.append)
    center.emit(NotificationKind.SEND_FAILED, client_id="abc")

    assert [n.kind for n in seen] == [NotificationKind.SEND_FAILED]
    assert seen[0].payload == {"client_id": "abc"}

    unsubscribe()
    center.emit(NotificationKind.MESSAGE_RECEIVED)
    assert len(seen) == 1


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PET_MESSAGING_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("PET_MESSAGING_LIST_POLL_INTERVAL", "4")
    monkeypatch.setenv("PET_MESSAGING_RATE_LIMIT", "7")
    monkeypatch.setenv("PET_MESSAGING_JSON_LOGS", "true")
    monkeypatch.setenv("PET_MESSAGING_LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.poll_interval == 2.5
    assert settings.rate_limit == 7
    assert settings.json_logs is True
    assert settings.page_size == 50
    assert settings.conversation_list_poll_interval == 4.0
    assert settings.log_level == "DEBUG"


def test_settings_arguments_override_env(monkeypatch):
    monkeypatch.setenv("PET_MESSAGING_PAGE_SIZE", "20")

    settings = Settings(page_size=5, conversation_list_poll_interval=1.5)

    assert settings.page_size == 5
    assert settings.conversation_list_poll_interval == 1.5


def test_settings_reject_malformed_env(monkeypatch):
    monkeypatch.setenv("PET_MESSAGING_RATE_LIMIT", "lots")

    with pytest.raises(ValidationError):
        Settings()
