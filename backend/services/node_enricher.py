"""Deterministic metadata and relationships for knowledge graph nodes."""
from typing import List, Tuple

from models.knowledge import KnowledgeNode, Relationship

# Checked in order; the first matching rule wins.
FORMAT_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("pct", "rate"), "percentage"),
    (("date", "year"), "date"),
    (("id",), "identifier"),
    (("name",), "string"),
    (("count", "number"), "numeric"),
)
DEFAULT_FORMAT = "string"
NODE_TYPE = "Variable"
ID_SUFFIX = "_id"


class NodeEnricher:
    """Map a node name to its label, format, type and relationships."""

    def __init__(self, corpus_name: str = "directory", source_name: str = "ipeds"):
        self.corpus_name = corpus_name
        self.source_name = source_name

    def enrich(self, name: str) -> KnowledgeNode:
        return KnowledgeNode(
            name=name,
            label=self.label_for(name),
            format=self.infer_format(name),
            type=NODE_TYPE,
            relationships=tuple(self.relationships_for(name))
        )

    @staticmethod
    def label_for(name: str) -> str:
        return f"{name.replace('_', ' ')} field"

    @staticmethod
    def infer_format(name: str) -> str:
        for needles, fmt in FORMAT_RULES:
            if any(needle in name for needle in needles):
                return fmt
        return DEFAULT_FORMAT

    def relationships_for(self, name: str) -> List[Relationship]:
        relationships = [
            Relationship(type="EXISTS_IN", target=self.corpus_name),
            Relationship(type="PROVIDED_BY", target=self.source_name),
        ]
        if name.endswith(ID_SUFFIX) and len(name) > len(ID_SUFFIX):
            relationships.append(
                Relationship(type="IDENTIFIES", target=name[:-len(ID_SUFFIX)])
            )
        return relationships
