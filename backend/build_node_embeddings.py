"""
Node Embedding Build Script for the knowledge-augmented assistant.

This script:
1. Loads node names from the names artifact (one per line)
2. Warms up the embedding model
3. Embeds node names in batches using HuggingFace API
4. Writes the name -> vector JSON artifact used by the SimilarityIndex

Query and node vectors must come from the same model, so rebuild the
artifact whenever EMBEDDING_MODEL changes.

Usage:
    python build_node_embeddings.py
"""
import sys
import json
import asyncio
import logging
from pathlib import Path
from typing import Dict, List

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from services.embedding_model import EmbeddingModel
from services.errors import DataLoadError
from config import HUGGINGFACE_API_KEY, NODE_EMBEDDINGS_PATH, NODE_NAMES_PATH

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


def read_node_names(names_path: str) -> List[str]:
    """Read newline-delimited node names, skipping blank lines."""
    try:
        text = Path(names_path).read_text(encoding="utf-8")
    except OSError as e:
        raise DataLoadError(f"Failed to read node names from {names_path}: {e}")
    return [line.strip() for line in text.splitlines() if line.strip()]


async def build_embeddings(
    embedding_model: EmbeddingModel,
    names: List[str],
    batch_size: int = BATCH_SIZE
) -> Dict[str, List[float]]:
    """
    Embed every node name, batch by batch.

    Args:
        embedding_model: EmbeddingModel used for both nodes and queries
        names: Node names in corpus order
        batch_size: Names per API call

    Returns:
        Mapping of node name to embedding vector
    """
    vectors: Dict[str, List[float]] = {}
    total_batches = (len(names) + batch_size - 1) // batch_size

    for i in range(0, len(names), batch_size):
        batch = names[i:i + batch_size]
        batch_num = (i // batch_size) + 1

        logger.info(f"Embedding batch {batch_num}/{total_batches} ({len(batch)} names)...")
        # node names read better to the model with spaces than underscores
        embeddings = await embedding_model.embed_batch([name.replace("_", " ") for name in batch])
        vectors.update(zip(batch, embeddings))

    return vectors


def write_embeddings(vectors: Dict[str, List[float]], embeddings_path: str) -> None:
    path = Path(embeddings_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(vectors, f)


async def run(names_path: str = NODE_NAMES_PATH, embeddings_path: str = NODE_EMBEDDINGS_PATH) -> int:
    embedding_model = EmbeddingModel(api_key=HUGGINGFACE_API_KEY)
    logger.info("✓ Embedding model initialized")

    names = read_node_names(names_path)
    if not names:
        logger.error(f"No node names found in {names_path}")
        return 1
    logger.info(f"✓ Loaded {len(names)} node names")

    logger.info("This may take 15-20 seconds on first run (HuggingFace free tier)...")
    await embedding_model.warmup()

    vectors = await build_embeddings(embedding_model, names)
    write_embeddings(vectors, embeddings_path)
    logger.info(f"✓ Wrote {len(vectors)} embeddings to {embeddings_path}")
    return 0


def main():
    """Main build process."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        logger.warning("\nBuild interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"\nBuild failed: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
