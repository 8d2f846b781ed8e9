"""Retrieval engine for looking up knowledge graph nodes relevant to a query."""
import logging
from typing import List, Optional
from config import RETRIEVAL_TOP_K, KNOWLEDGE_SYNTHESIS_ENABLED
from models.knowledge import RetrievalResult, ScoredNode
from services.embedding_model import EmbeddingModel
from services.errors import EmbeddingError
from services.llm_client import LLMClient, LLMClientError
from services.node_enricher import NodeEnricher
from services.similarity_index import SimilarityIndex

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Orchestrate query embedding, similarity search and node enrichment."""

    def __init__(
        self,
        index: SimilarityIndex,
        embedding_model: EmbeddingModel,
        enricher: Optional[NodeEnricher] = None,
        llm_client: Optional[LLMClient] = None,
        top_k: int = RETRIEVAL_TOP_K,
        synthesize: bool = KNOWLEDGE_SYNTHESIS_ENABLED
    ):
        """
        Initialize the retrieval engine.

        Args:
            index: Loaded SimilarityIndex over node embeddings
            embedding_model: EmbeddingModel instance for query embedding
            enricher: NodeEnricher for node metadata (default: NodeEnricher())
            llm_client: Completion client used for optional synthesis
            top_k: Number of nodes to return
            synthesize: Whether queries compose a synthesis by default
        """
        self.index = index
        self.embedding_model = embedding_model
        self.enricher = enricher or NodeEnricher()
        self.llm_client = llm_client
        self.top_k = top_k
        self.synthesize = synthesize
        logger.info("Initialized RetrievalEngine")

    async def query(self, text: str, synthesize: Optional[bool] = None) -> RetrievalResult:
        """
        Look up the knowledge graph nodes most relevant to ``text``.

        1. Embed the query (no retry here; callers retry if they want to)
        2. Rank all indexed nodes by cosine similarity and keep the top K
        3. Enrich each hit with its label, format, type and relationships
        4. Optionally ask the completion provider for a synthesis; a failure
           there is logged and leaves the node list intact

        Args:
            text: User query
            synthesize: Override the engine's synthesis default

        Returns:
            RetrievalResult, empty for a blank query

        Raises:
            EmbeddingError: If the embedding provider fails
            DataLoadError: If the index is not loaded or dimensions disagree
        """
        if not text or not text.strip():
            logger.warning("Empty query string provided, returning empty results")
            return RetrievalResult(query=text or "")

        logger.debug(f"Embedding query: {text[:100]}...")
        try:
            query_embedding = await self.embedding_model.embed_text(text)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Embedding provider failed: {e}", exc_info=True)
            raise EmbeddingError(f"Failed to embed query: {str(e)}")

        hits = self.index.top_k(query_embedding, k=self.top_k)
        nodes = [
            ScoredNode(node=self.enricher.enrich(name), similarity=similarity)
            for name, similarity in hits
        ]
        result = RetrievalResult(query=text, nodes=nodes)

        if nodes:
            logger.info(
                f"Retrieved {len(nodes)} nodes (top: {nodes[0].node.name}, "
                f"similarity: {nodes[0].similarity:.3f})"
            )
        else:
            logger.info("No nodes found for query")

        should_synthesize = self.synthesize if synthesize is None else synthesize
        if should_synthesize and nodes:
            result.synthesis = await self._synthesize(text, nodes)

        return result

    async def _synthesize(self, text: str, nodes: List[ScoredNode]) -> Optional[str]:
        if self.llm_client is None:
            logger.warning("Synthesis requested but no LLM client is configured")
            return None

        try:
            response = await self.llm_client.generate(
                prompt=text,
                system_prompt=LLMClient.build_knowledge_prompt(nodes)
            )
        except LLMClientError as e:
            logger.warning(f"Knowledge synthesis failed, returning nodes only: {e.message}")
            return None
        return response.text
