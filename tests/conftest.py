"""Shared fixtures: a seeded directory, a messaging context and HTTP clients."""

import httpx
import pytest

from pet_messaging.api.app import create_app
from pet_messaging.config import Settings
from pet_messaging.domain.models import PetProfile, UserProfile
from pet_messaging.services.directory import InMemoryPetCatalog, InMemoryUserDirectory
from pet_messaging.services.messaging import build_context

ALICE = UserProfile(id="1", username="alice", avatar_url="https://cdn.example.org/u/1.png")
BOB = UserProfile(id="2", username="bob", avatar_url="https://cdn.example.org/u/2.png")
CAROL = UserProfile(id="3", username="carol")

MAX = PetProfile(id=42, name="Max", image_url="https://cdn.example.org/p/42.jpg")
LUNA = PetProfile(id=7, name="Luna")


@pytest.fixture
def settings():
    return Settings(
        poll_interval=0.05,
        conversation_list_poll_interval=0.05,
        write_queue_timeout=5.0,
        write_queue_idle_timeout=0.2,
        rate_limit=10_000,
        page_size=50,
        max_page_size=200,
    )


@pytest.fixture
def user_directory():
    return InMemoryUserDirectory([ALICE, BOB, CAROL])


@pytest.fixture
def pet_catalog():
    return InMemoryPetCatalog([MAX, LUNA])


@pytest.fixture
def context(settings, user_directory, pet_catalog):
    return build_context(settings, users=user_directory, pets=pet_catalog)


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def tracker(context):
    return context.tracker


@pytest.fixture
def index(context):
    return context.index


@pytest.fixture
def service(context):
    return context.service


@pytest.fixture
def app(context):
    return create_app(context)


@pytest.fixture
def make_client(app):
    """Factory for an HTTP client acting as the given user."""

    def factory(user_id=None, target=None):
        headers = {"X-User-Id": user_id} if user_id else {}
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=target or app),
            base_url="http://test",
            headers=headers,
        )

    return factory
