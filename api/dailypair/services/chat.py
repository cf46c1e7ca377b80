import uuid
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session

from ..models import ChatChannel


class ChatService(ABC):
    """Creates the chat channel for a pairing and returns its opaque reference.

    Called inside the pairing's creation transaction, so implementations must
    not block on slow network calls.
    """

    @abstractmethod
    def create_channel(self, db: Session, pairing_id: str, participant_a_id: str, participant_b_id: str) -> str: ...


class SqlChatService(ChatService):
    """Writes a local chat stub in the same transaction as the pairing."""

    def create_channel(self, db: Session, pairing_id: str, participant_a_id: str, participant_b_id: str) -> str:
        a, b = sorted([participant_a_id, participant_b_id])
        channel = ChatChannel(id=f"chat_{uuid.uuid4().hex}", pairing_id=pairing_id, participant_a_id=a, participant_b_id=b)
        db.add(channel)
        return channel.id
