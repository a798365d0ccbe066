"""Domain models for the messaging core."""

import json
from datetime import datetime, timezone
from typing import Optional, Tuple
from uuid import UUID, uuid5

from pydantic import BaseModel, ConfigDict, Field

# Namespace for deterministic conversation ids.
CONVERSATION_NAMESPACE = UUID("6f1c2a4e-8d3b-5e7a-9c0f-2b4d6e8a1c3f")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ordered_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


def conversation_id_for(user_a: str, user_b: str, pet_id: int) -> UUID:
    """Derive the conversation id for two users talking about one pet.

    Participant order does not matter. The name is JSON encoded so that no
    two distinct (users, pet) triples share it.
    """
    low, high = ordered_pair(user_a, user_b)
    return uuid5(CONVERSATION_NAMESPACE, json.dumps([low, high, pet_id]))


class UserProfile(BaseModel):
    """User as supplied by the user directory."""

    id: str
    username: str
    avatar_url: Optional[str] = None


class PetProfile(BaseModel):
    """Pet as supplied by the pet catalog."""

    id: int
    name: str
    image_url: Optional[str] = None


class Message(BaseModel):
    """Message model."""

    id: int
    conversation_id: UUID
    sender_id: str
    recipient_id: str
    pet_id: int
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None
    client_id: Optional[str] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class Conversation(BaseModel):
    """Conversation model."""

    id: UUID
    participants: Tuple[str, str]
    pet_id: int
    created_at: datetime = Field(default_factory=utcnow)
    last_message: Optional[Message] = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterpart(self, user_id: str) -> str:
        low, high = self.participants
        return high if user_id == low else low


class ConversationSummary(BaseModel):
    """One row of a user's conversation list."""

    id: UUID
    other_user: UserProfile
    pet: PetProfile
    latest_message: Optional[Message] = None
    unread_count: int = 0


class MessageCreate(BaseModel):
    """Send request. The recipient is given by id or by username."""

    model_config = ConfigDict(populate_by_name=True)

    recipient_id: Optional[str] = None
    receiver: Optional[str] = None
    pet_id: int = Field(alias="pet")
    content: str
    client_id: Optional[str] = None


class ReadReceipt(BaseModel):
    updated: int


class UnreadCount(BaseModel):
    unread_count: int


class ConversationHandle(BaseModel):
    conversation_id: UUID
