"""Unit tests for SimilarityIndex."""
import sys
import json
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from services.similarity_index import SimilarityIndex, cosine_similarity
from services.errors import DataLoadError, DimensionMismatchError


@pytest.fixture
def vectors():
    return {
        "admit_rate": [1.0, 0.0, 0.0],
        "yield_rate": [0.8, 0.6, 0.0],
        "inst_name": [0.0, 1.0, 0.0],
        "unitid": [0.0, 0.0, 1.0],
    }


@pytest.fixture
def index(vectors):
    idx = SimilarityIndex()
    idx.load(vectors, ["admit_rate", "yield_rate", "inst_name", "unitid"])
    return idx


class TestCosineSimilarity:
    """Properties of the cosine similarity helper."""

    def test_self_similarity_is_one(self):
        v = [0.3, -1.2, 4.5, 0.01]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_symmetric(self):
        a = [1.0, 2.0, 3.0]
        b = [-2.0, 0.5, 1.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_bounded(self):
        pairs = [
            ([1.0, 0.0], [-1.0, 0.0]),
            ([1.0, 1.0], [1.0, 1.0000001]),
            ([3.0, -4.0], [0.1, 7.0]),
        ]
        for a, b in pairs:
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestSimilarityIndexLoad:
    """Loading and integrity checks."""

    def test_load_populates_index(self, index):
        assert index.is_loaded
        assert index.size == 4
        assert index.dimension == 3
        assert index.names == ["admit_rate", "yield_rate", "inst_name", "unitid"]

    def test_load_is_idempotent(self, index):
        index.load({"other": [1.0]}, ["other"])

        assert index.size == 4
        assert index.names[0] == "admit_rate"

    def test_name_without_vector(self, vectors):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError, match="do not match") as exc_info:
            idx.load(vectors, ["admit_rate", "yield_rate", "inst_name", "unitid", "zip"])

        assert exc_info.value.details["names_without_vectors"] == ["zip"]
        assert not idx.is_loaded

    def test_vector_without_name(self, vectors):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError) as exc_info:
            idx.load(vectors, ["admit_rate", "yield_rate", "inst_name"])

        assert exc_info.value.details["vectors_without_names"] == ["unitid"]

    def test_duplicate_names(self):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError, match="Duplicate"):
            idx.load({"a": [1.0]}, ["a", "a"])

    def test_inconsistent_dimension(self):
        idx = SimilarityIndex()
        with pytest.raises(DimensionMismatchError):
            idx.load({"a": [1.0, 0.0], "b": [1.0, 0.0, 0.0]}, ["a", "b"])
        assert not idx.is_loaded

    def test_non_numeric_vector(self):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError, match="not numeric"):
            idx.load({"a": ["x", "y"]}, ["a"])

    @pytest.mark.parametrize("bad_value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_vector(self, bad_value):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError, match="NaN or infinite") as exc_info:
            idx.load({"a": [1.0, 0.0], "b": [bad_value, 1.0]}, ["a", "b"])

        assert exc_info.value.details["name"] == "b"
        assert not idx.is_loaded

    def test_load_from_files_rejects_nan(self, tmp_path):
        embeddings_path = tmp_path / "node_embeddings.json"
        # json.dumps writes NaN, which json.load reads back as float('nan')
        embeddings_path.write_text(json.dumps({"a": [float("nan"), 1.0]}))
        names_path = tmp_path / "node_names.txt"
        names_path.write_text("a\n")

        with pytest.raises(DataLoadError, match="NaN or infinite"):
            SimilarityIndex().load_from_files(str(embeddings_path), str(names_path))

    def test_load_from_files(self, tmp_path, vectors):
        embeddings_path = tmp_path / "node_embeddings.json"
        names_path = tmp_path / "node_names.txt"
        embeddings_path.write_text(json.dumps(vectors))
        names_path.write_text("unitid\ninst_name\n\nadmit_rate\nyield_rate\n")

        idx = SimilarityIndex()
        idx.load_from_files(str(embeddings_path), str(names_path))

        assert idx.names == ["unitid", "inst_name", "admit_rate", "yield_rate"]

    def test_load_from_missing_file(self, tmp_path):
        idx = SimilarityIndex()
        with pytest.raises(DataLoadError, match="Failed to load node embeddings"):
            idx.load_from_files(str(tmp_path / "missing.json"), str(tmp_path / "names.txt"))

    def test_load_from_malformed_json(self, tmp_path):
        embeddings_path = tmp_path / "node_embeddings.json"
        embeddings_path.write_text("{not json")
        names_path = tmp_path / "node_names.txt"
        names_path.write_text("a\n")

        idx = SimilarityIndex()
        with pytest.raises(DataLoadError):
            idx.load_from_files(str(embeddings_path), str(names_path))


class TestSimilarityIndexTopK:
    """Nearest-neighbour queries."""

    def test_returns_min_k_n_results(self, index):
        assert len(index.top_k([1.0, 0.0, 0.0], k=2)) == 2
        assert len(index.top_k([1.0, 0.0, 0.0], k=10)) == 4

    def test_sorted_descending(self, index):
        results = index.top_k([0.9, 0.3, 0.1], k=4)
        scores = [score for _, score in results]

        assert scores == sorted(scores, reverse=True)
        assert results[0][0] == "admit_rate"

    def test_exact_match_scores_one(self, index):
        name, score = index.top_k([0.0, 0.0, 5.0], k=1)[0]

        assert name == "unitid"
        assert score == pytest.approx(1.0)

    def test_ties_follow_load_order(self):
        idx = SimilarityIndex()
        idx.load(
            {"zeta": [1.0, 1.0], "alpha": [1.0, 1.0], "other": [1.0, -1.0]},
            ["zeta", "alpha", "other"]
        )

        results = idx.top_k([1.0, 1.0], k=3)

        assert [name for name, _ in results] == ["zeta", "alpha", "other"]
        assert results[0][1] == results[1][1]

    def test_ties_follow_load_order_reversed(self):
        idx = SimilarityIndex()
        idx.load(
            {"zeta": [1.0, 1.0], "alpha": [1.0, 1.0]},
            ["alpha", "zeta"]
        )

        assert [name for name, _ in idx.top_k([2.0, 2.0], k=2)] == ["alpha", "zeta"]

    def test_query_dimension_mismatch(self, index):
        with pytest.raises(DimensionMismatchError):
            index.top_k([1.0, 0.0], k=1)

    def test_unloaded_index(self):
        with pytest.raises(DataLoadError, match="not been loaded"):
            SimilarityIndex().top_k([1.0], k=1)

    def test_invalid_k(self, index):
        with pytest.raises(ValueError, match="k must be positive"):
            index.top_k([1.0, 0.0, 0.0], k=0)

    def test_zero_query_vector(self, index):
        results = index.top_k([0.0, 0.0, 0.0], k=4)

        assert all(score == 0.0 for _, score in results)
        assert [name for name, _ in results] == index.names
