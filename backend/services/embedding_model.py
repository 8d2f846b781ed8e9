"""Embedding model integration with Hugging Face Inference API."""
import asyncio
import time
import logging
from typing import List
import httpx
from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL
from services.errors import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingModel:
    """Wrapper for Hugging Face Inference API embedding model."""

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        max_retries: int = 3,
        initial_delay: float = 5.0,
        timeout: float = 60.0
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: sentence-transformers/all-mpnet-base-v2)
            max_retries: Maximum attempts while the model is still loading (503)
            initial_delay: Initial delay in seconds between loading checks
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.api_url = f"https://api-inference.huggingface.co/models/{model_name}"

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            EmbeddingError: If the provider request fails
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return (await self._embed([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per text

        Raises:
            ValueError: If texts list is empty or contains empty strings
            EmbeddingError: If the provider request fails
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        if any(not t or not t.strip() for t in texts):
            raise ValueError("Texts in batch cannot be empty")

        return await self._embed(texts)

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        """
        Call the HF API once, waiting out the free tier's cold start.

        A sleeping model answers 503 while it loads; only that case is
        retried, with exponential backoff. Every other failure surfaces
        immediately as EmbeddingError.
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True  # Wait for model to load if sleeping
            }
        }

        delay = self.initial_delay

        for attempt in range(self.max_retries):
            start_time = time.time()
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.api_url,
                        headers=headers,
                        json=payload
                    )
            except httpx.TimeoutException as e:
                logger.error(f"Embedding request timed out after {self.timeout}s")
                raise EmbeddingError(
                    f"Request timeout after {self.timeout}s",
                    details={"model": self.model_name, "original_error": str(e)}
                )
            except httpx.RequestError as e:
                logger.error(f"Network error calling embedding API: {e}")
                raise EmbeddingError(
                    f"Network error: {str(e)}",
                    details={"model": self.model_name, "original_error": str(e)}
                )

            elapsed = time.time() - start_time

            # Handle 503 Service Unavailable (model loading)
            if response.status_code == 503:
                logger.warning(
                    f"Model loading (503) on attempt {attempt + 1}/{self.max_retries}. "
                    f"Retrying in {delay}s..."
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60.0)  # Exponential backoff, max 60s
                    continue
                break

            if response.status_code == 429:
                logger.error("Rate limit exceeded for Hugging Face API")
                raise EmbeddingError("Rate limit exceeded. Please try again later.",
                                     details={"status_code": 429})

            if response.status_code == 401:
                logger.error("Authentication failed for Hugging Face API")
                raise EmbeddingError("Invalid API key", details={"status_code": 401})

            if response.status_code != 200:
                error_msg = f"API request failed with status {response.status_code}: {response.text}"
                logger.error(error_msg)
                raise EmbeddingError(error_msg, details={"status_code": response.status_code})

            embeddings = response.json()
            if not isinstance(embeddings, list) or len(embeddings) != len(texts):
                raise EmbeddingError(
                    "Unexpected embedding response shape",
                    details={"expected": len(texts)}
                )

            logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")
            return embeddings

        error_msg = f"Model failed to load after {self.max_retries} attempts"
        logger.error(error_msg)
        raise EmbeddingError(error_msg, details={"model": self.model_name})

    async def warmup(self) -> bool:
        """
        Warm up the model with a dummy query to avoid cold start delays.

        Returns:
            True if warmup successful, False otherwise
        """
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()

            await self.embed_text("warmup query")

            elapsed = time.time() - start_time
            logger.info(f"Model warmup completed in {elapsed:.1f}s")
            return True

        except (EmbeddingError, ValueError) as e:
            logger.error(f"Model warmup failed: {str(e)}")
            return False
