"""Conversation data models."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from models.knowledge import RetrievalResult


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


def _generate_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex[:12]}"


@dataclass
class Turn:
    """Represents a single turn in a conversation.

    A turn starts out pending and is frozen once it is delivered or failed.
    """
    role: Role
    content: str = ""
    status: TurnStatus = TurnStatus.PENDING
    turn_id: str = field(default_factory=_generate_turn_id)
    timestamp: datetime = field(default_factory=datetime.now)
    knowledge: Optional[RetrievalResult] = None

    @property
    def is_final(self) -> bool:
        return self.status != TurnStatus.PENDING

    def append(self, fragment: str) -> None:
        self._ensure_pending()
        self.content += fragment

    def mark_delivered(self, knowledge: Optional[RetrievalResult] = None) -> None:
        self._ensure_pending()
        self.knowledge = knowledge
        self.status = TurnStatus.DELIVERED

    def mark_failed(self, message: Optional[str] = None) -> None:
        self._ensure_pending()
        if message is not None:
            self.content = message
        self.status = TurnStatus.FAILED

    def _ensure_pending(self) -> None:
        if self.is_final:
            raise ValueError(f"Turn {self.turn_id} is already {self.status.value}")


@dataclass
class Conversation:
    """Represents a multi-turn conversation bound to a remote thread."""
    conversation_id: str
    turns: List[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    def add_turn(self, role: Role, content: str = "") -> Turn:
        turn = Turn(role=role, content=content)
        self.turns.append(turn)
        return turn

    def index_of(self, turn_id: str) -> int:
        for index, turn in enumerate(self.turns):
            if turn.turn_id == turn_id:
                return index
        raise KeyError(turn_id)

    def remove_turn(self, turn: Turn) -> None:
        self.turns = [t for t in self.turns if t is not turn]

    def truncate(self, index: int) -> List[Turn]:
        """Drop the turn at ``index`` and every turn after it."""
        dropped = self.turns[index:]
        self.turns = self.turns[:index]
        return dropped
