"""Knowledge graph data models."""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Relationship:
    """Directed, typed edge from a node to another name."""
    type: str
    target: str


@dataclass(frozen=True)
class KnowledgeNode:
    """Descriptive metadata for one indexed name."""
    name: str
    label: str
    format: str
    type: str
    relationships: Tuple[Relationship, ...] = ()


@dataclass
class ScoredNode:
    """Knowledge node with its cosine similarity to the query."""
    node: KnowledgeNode
    similarity: float  # -1.0 to 1.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self.node)
        data["relationships"] = [asdict(rel) for rel in self.node.relationships]
        data["similarity"] = self.similarity
        return data


@dataclass
class RetrievalResult:
    """Ranked nodes for a query, most similar first."""
    query: str
    nodes: List[ScoredNode] = field(default_factory=list)
    synthesis: Optional[str] = None

    @property
    def names(self) -> List[str]:
        return [scored.node.name for scored in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "nodes": [scored.to_dict() for scored in self.nodes],
            "synthesis": self.synthesis
        }
