"""Data models for the knowledge-augmented assistant."""
from .knowledge import KnowledgeNode, Relationship, ScoredNode, RetrievalResult
from .conversation import Conversation, Turn, Role, TurnStatus
from .api import (
    ChatRequest,
    ChatResponse,
    TurnRequest,
    KnowledgeRequest,
    KnowledgeResponse,
    NodeModel,
    RelationshipModel,
    TurnModel,
    ConversationResponse,
)

__all__ = [
    "KnowledgeNode",
    "Relationship",
    "ScoredNode",
    "RetrievalResult",
    "Conversation",
    "Turn",
    "Role",
    "TurnStatus",
    "ChatRequest",
    "ChatResponse",
    "TurnRequest",
    "KnowledgeRequest",
    "KnowledgeResponse",
    "NodeModel",
    "RelationshipModel",
    "TurnModel",
    "ConversationResponse",
]
