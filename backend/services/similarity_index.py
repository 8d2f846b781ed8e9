"""In-memory cosine-similarity index over named node embeddings."""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from services.errors import DataLoadError, DimensionMismatchError

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, clipped to [-1, 1].

    Returns 0.0 when either vector has zero norm.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatchError(
            f"Cannot compare vectors of dimension {vec_a.shape[0]} and {vec_b.shape[0]}"
        )
    norm = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(vec_a, vec_b) / norm, -1.0, 1.0))


class SimilarityIndex:
    """
    Exhaustive nearest-neighbour search over a small, bounded node set.

    Every query scans all N stored vectors (O(N*D)); there is no auxiliary
    index structure, so this is only suitable for corpora that fit
    comfortably in memory.
    """

    def __init__(self):
        self._names: List[str] = []
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def size(self) -> int:
        return len(self._names)

    @property
    def dimension(self) -> Optional[int]:
        if self._matrix is None or not self._names:
            return None
        return int(self._matrix.shape[1])

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def load(self, vectors_by_name: Dict[str, Sequence[float]], ordered_names: Sequence[str]) -> None:
        """
        Populate the index.

        Rows are stored in ``ordered_names`` order, which is the order used to
        break similarity ties. Calling ``load`` again after a successful load
        does nothing.

        Args:
            vectors_by_name: Mapping of node name to embedding vector
            ordered_names: Node names in corpus order

        Raises:
            DataLoadError: If names and vectors are not in bijection or a
                vector is not numeric
            DimensionMismatchError: If vectors differ in dimension
        """
        if self._loaded:
            logger.debug("SimilarityIndex already loaded, skipping")
            return

        names = list(ordered_names)
        if len(set(names)) != len(names):
            duplicates = sorted({name for name in names if names.count(name) > 1})
            raise DataLoadError(
                f"Duplicate node names: {', '.join(duplicates)}",
                details={"duplicates": duplicates}
            )

        missing_vectors = [name for name in names if name not in vectors_by_name]
        name_set = set(names)
        missing_names = [name for name in vectors_by_name if name not in name_set]
        if missing_vectors or missing_names:
            raise DataLoadError(
                "Node names and node embeddings do not match",
                details={
                    "names_without_vectors": missing_vectors,
                    "vectors_without_names": missing_names
                }
            )

        rows = []
        dimension = None
        for name in names:
            try:
                row = np.asarray(vectors_by_name[name], dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise DataLoadError(f"Embedding for '{name}' is not numeric: {e}")
            if row.ndim != 1 or row.size == 0:
                raise DataLoadError(f"Embedding for '{name}' must be a non-empty flat vector")
            if not np.isfinite(row).all():
                raise DataLoadError(
                    f"Embedding for '{name}' contains NaN or infinite values",
                    details={"name": name}
                )
            if dimension is None:
                dimension = row.size
            elif row.size != dimension:
                raise DimensionMismatchError(
                    f"Embedding for '{name}' has dimension {row.size}, expected {dimension}",
                    details={"name": name, "dimension": int(row.size), "expected": dimension}
                )
            rows.append(row)

        self._names = names
        self._matrix = np.vstack(rows) if rows else np.empty((0, 0))
        self._norms = np.linalg.norm(self._matrix, axis=1) if rows else np.empty(0)
        self._loaded = True

        logger.info(f"Loaded SimilarityIndex with {len(names)} nodes (dimension={dimension})")

    def load_from_files(self, embeddings_path: str, names_path: str) -> None:
        """
        Load the JSON embeddings artifact and the newline-delimited names artifact.

        Raises:
            DataLoadError: If either artifact is missing or malformed
        """
        if self._loaded:
            logger.debug("SimilarityIndex already loaded, skipping file load")
            return

        try:
            with open(embeddings_path, "r", encoding="utf-8") as f:
                vectors_by_name = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DataLoadError(
                f"Failed to load node embeddings from {embeddings_path}: {e}",
                details={"path": str(embeddings_path)}
            )
        if not isinstance(vectors_by_name, dict):
            raise DataLoadError(f"Node embeddings in {embeddings_path} must be a JSON object")

        try:
            text = Path(names_path).read_text(encoding="utf-8")
        except OSError as e:
            raise DataLoadError(
                f"Failed to load node names from {names_path}: {e}",
                details={"path": str(names_path)}
            )
        ordered_names = [line.strip() for line in text.splitlines() if line.strip()]

        self.load(vectors_by_name, ordered_names)

    def top_k(self, query_vector: Sequence[float], k: int = 5) -> List[Tuple[str, float]]:
        """
        Find the ``k`` stored names most similar to ``query_vector``.

        Args:
            query_vector: Query embedding
            k: Maximum number of results

        Returns:
            ``min(k, N)`` (name, similarity) pairs, highest similarity first,
            ties in corpus order

        Raises:
            ValueError: If k is not positive
            DataLoadError: If the index has not been loaded
            DimensionMismatchError: If the query dimension differs from the index
        """
        if k <= 0:
            raise ValueError("k must be positive")
        if not self._loaded:
            raise DataLoadError("SimilarityIndex has not been loaded")
        if not self._names:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.size != self._matrix.shape[1]:
            raise DimensionMismatchError(
                f"Query vector has dimension {query.size}, index has {self._matrix.shape[1]}",
                details={"dimension": int(query.size), "expected": int(self._matrix.shape[1])}
            )

        denominators = self._norms * np.linalg.norm(query)
        dots = self._matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(denominators > 0, dots / denominators, 0.0)
        scores = np.clip(scores, -1.0, 1.0)

        # stable sort keeps corpus order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        return [(self._names[i], float(scores[i])) for i in order]
