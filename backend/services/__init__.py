"""Services for the knowledge-augmented assistant."""
from .errors import (
    ChatbotError,
    InitializationError,
    ConversationCreateError,
    DataLoadError,
    DimensionMismatchError,
    EmbeddingError,
    ProviderError,
    RunError,
    RunTimeoutError,
    TurnCancelledError,
    ProtocolError,
    RetryExhaustedError,
    TurnInFlightError,
)
from .similarity_index import SimilarityIndex, cosine_similarity
from .node_enricher import NodeEnricher
from .embedding_model import EmbeddingModel
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .retrieval_engine import RetrievalEngine
from .assistant_api import AssistantAPI
from .conversation_client import ConversationClient, RunStatus, chunk_text
from .turn_orchestrator import TurnOrchestrator, TurnStream

__all__ = [
    'ChatbotError', 'InitializationError', 'ConversationCreateError', 'DataLoadError',
    'DimensionMismatchError', 'EmbeddingError', 'ProviderError', 'RunError',
    'RunTimeoutError', 'TurnCancelledError', 'ProtocolError', 'RetryExhaustedError',
    'TurnInFlightError', 'SimilarityIndex', 'cosine_similarity', 'NodeEnricher',
    'EmbeddingModel', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError',
    'RetrievalEngine', 'AssistantAPI', 'ConversationClient', 'RunStatus', 'chunk_text',
    'TurnOrchestrator', 'TurnStream',
]
