"""Request and response models for the HTTP API."""
from typing import List, Optional
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str


class ChatResponse(BaseModel):
    message: str


class TurnRequest(BaseModel):
    question: str = Field(..., description="User text for the new turn")


class KnowledgeRequest(BaseModel):
    query: str
    synthesize: bool = False


class RelationshipModel(BaseModel):
    type: str
    target: str


class NodeModel(BaseModel):
    name: str
    label: str
    format: str
    type: str
    similarity: float
    relationships: List[RelationshipModel]


class KnowledgeResponse(BaseModel):
    query: str
    nodes: List[NodeModel]
    synthesis: Optional[str] = None


class TurnModel(BaseModel):
    turn_id: str
    role: str
    content: str
    status: str
    timestamp: str
    knowledge: Optional[KnowledgeResponse] = None


class ConversationResponse(BaseModel):
    conversation_id: Optional[str] = None
    turns: List[TurnModel]
