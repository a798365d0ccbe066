"""Read-only lookups into the user directory and the pet catalog.

Both are owned by other subsystems. The messaging core only reads them to
decorate conversation summaries, and tolerates entries that have been
deleted by falling back to placeholders.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Generic, Hashable, Iterable, Optional, Tuple, TypeVar

import structlog

from ..domain.models import PetProfile, UserProfile

logger = structlog.get_logger()

UNKNOWN_USERNAME = "Unknown User"
UNNAMED_PET = "Unnamed Pet"

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def placeholder_user(user_id: str) -> UserProfile:
    return UserProfile(id=user_id, username=UNKNOWN_USERNAME)


def placeholder_pet(pet_id: int) -> PetProfile:
    return PetProfile(id=pet_id, name=UNNAMED_PET)


class UserDirectory(ABC):
    """Source of user display data."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        """Return the user or None if unknown."""
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserProfile]:
        """Resolve a username to a user."""
        pass


class PetCatalog(ABC):
    """Source of pet display data."""

    @abstractmethod
    async def get_pet(self, pet_id: int) -> Optional[PetProfile]:
        """Return the pet or None if unknown."""
        pass


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[UserProfile] = ()) -> None:
        self._users: Dict[str, UserProfile] = {u.id: u for u in users}

    def add(self, user: UserProfile) -> None:
        self._users[user.id] = user

    def remove(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        return self._users.get(user_id)

    async def find_by_username(self, username: str) -> Optional[UserProfile]:
        for user in self._users.values():
            if user.username == username:
                return user
        return None


class InMemoryPetCatalog(PetCatalog):
    def __init__(self, pets: Iterable[PetProfile] = ()) -> None:
        self._pets: Dict[int, PetProfile] = {p.id: p for p in pets}

    def add(self, pet: PetProfile) -> None:
        self._pets[pet.id] = pet

    def remove(self, pet_id: int) -> None:
        self._pets.pop(pet_id, None)

    async def get_pet(self, pet_id: int) -> Optional[PetProfile]:
        return self._pets.get(pet_id)


class TTLCache(Generic[K, V]):
    """Small expiring map. Misses (None) are cached too."""

    def __init__(self, ttl: float) -> None:
        self.ttl = ttl
        self._entries: Dict[K, Tuple[float, Optional[V]]] = {}

    def get(self, key: K) -> Tuple[bool, Optional[V]]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        stored_at, value = entry
        if time.monotonic() - stored_at >= self.ttl:
            del self._entries[key]
            return False, None
        return True, value

    def put(self, key: K, value: Optional[V]) -> None:
        self._entries[key] = (time.monotonic(), value)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)


class CachedUserDirectory(UserDirectory):
    """Read-through cache in front of another directory.

    Entries may be stale for up to ``ttl`` seconds.
    """

    def __init__(self, source: UserDirectory, ttl: float = 300.0) -> None:
        self._source = source
        self._by_id: TTLCache[str, UserProfile] = TTLCache(ttl)

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        hit, user = self._by_id.get(user_id)
        if hit:
            return user
        user = await self._source.get_user(user_id)
        self._by_id.put(user_id, user)
        logger.debug("user_cache_miss", user_id=user_id, found=user is not None)
        return user

    async def find_by_username(self, username: str) -> Optional[UserProfile]:
        # Usernames can change, always go to the source.
        user = await self._source.find_by_username(username)
        if user is not None:
            self._by_id.put(user.id, user)
        return user

    def invalidate(self, user_id: str) -> None:
        self._by_id.invalidate(user_id)


class CachedPetCatalog(PetCatalog):
    """Read-through cache in front of another catalog."""

    def __init__(self, source: PetCatalog, ttl: float = 300.0) -> None:
        self._source = source
        self._by_id: TTLCache[int, PetProfile] = TTLCache(ttl)

    async def get_pet(self, pet_id: int) -> Optional[PetProfile]:
        hit, pet = self._by_id.get(pet_id)
        if hit:
            return pet
        pet = await self._source.get_pet(pet_id)
        self._by_id.put(pet_id, pet)
        logger.debug("pet_cache_miss", pet_id=pet_id, found=pet is not None)
        return pet

    def invalidate(self, pet_id: int) -> None:
        self._by_id.invalidate(pet_id)
