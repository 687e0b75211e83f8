"""
Embedding providers for session memory.

Every provider turns text into a fixed-dimension vector. Input longer than
the provider's limit is truncated before the call; a provider failure is
fatal for the calling operation (there is no fallback vector).
"""

import asyncio
import hashlib
import logging
import math
import os
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from ..errors import ConfigurationError, EmbeddingProviderError

logger = logging.getLogger(__name__)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate raw cosine similarity between two vectors.

    Returns a value in [-1, 1]. Mismatched lengths or zero vectors give 0.
    """
    if len(vec1) == 0 or len(vec1) != len(vec2):
        return 0.0

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    # Maximum number of characters sent to the provider
    max_input_chars: int = 8000

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector

        Raises:
            EmbeddingProviderError: If the provider call fails
        """
        pass

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Get the embedding dimension."""
        pass

    def truncate(self, text: str) -> str:
        """Cap input at the provider limit."""
        return text[:self.max_input_chars]


class OpenAIEmbedding(EmbeddingProvider):
    """
    OpenAI embeddings API provider.

    Uses ``text-embedding-3-large`` by default (3072 dimensions).
    """

    DEFAULT_MODEL = "text-embedding-3-large"
    DEFAULT_DIMENSION = 3072

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        api_base: Optional[str] = None,
        timeout: float = 30.0,
        max_input_chars: int = 8000,
        client=None,
    ):
        """
        Initialize the OpenAI embedding provider.

        Args:
            api_key: API key. Defaults to OPENAI_API_KEY.
            model: Embedding model name.
            dimension: Vector dimension produced by the model.
            api_base: Optional custom base URL.
            timeout: Request timeout in seconds.
            max_input_chars: Input truncation limit.
            client: Pre-built AsyncOpenAI client (mainly for tests).
        """
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key and client is None:
            raise ConfigurationError("Missing OPENAI_API_KEY environment variable")

        self.model = model or self.DEFAULT_MODEL
        self._dimension = dimension or self.DEFAULT_DIMENSION
        self.api_base = api_base
        self.timeout = timeout
        self.max_input_chars = max_input_chars
        self._client = client

    def _get_client(self):
        """Get or create the async OpenAI client."""
        if self._client is None:
            import openai
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.timeout,
            )
        return self._client

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        return self._dimension

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding with the OpenAI embeddings endpoint."""
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=self.model,
                input=self.truncate(text),
            )
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e}")
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}", cause=e) from e

        if not response.data or not response.data[0].embedding:
            raise EmbeddingProviderError("No embedding returned from OpenAI")

        return list(response.data[0].embedding)


class SimpleEmbedding(EmbeddingProvider):
    """
    Hash-based bag-of-words embedding provider.

    A lightweight, deterministic alternative that needs no network access.
    Useful for local runs and tests; identical texts embed identically.
    """

    # Embedding dimension (hash-based)
    DIMENSION = 128

    def __init__(self, dimension: int = 128, max_input_chars: int = 8000):
        """
        Initialize the embedding provider.

        Args:
            dimension: Embedding vector dimension
            max_input_chars: Input truncation limit
        """
        self._dimension = dimension
        self.max_input_chars = max_input_chars

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        return self._dimension

    async def embed(self, text: str) -> List[float]:
        """
        Generate a simple embedding for text.

        Uses a hash-based approach to create a fixed-dimension
        vector that captures word presence information.
        """
        words = self._tokenize(self.truncate(text))

        vector = [0.0] * self._dimension
        if not words:
            return vector

        for word in words:
            # Hash word to get index
            word_hash = int(hashlib.md5(word.encode()).hexdigest(), 16)
            index = word_hash % self._dimension

            # Use a second hash for the sign
            sign_hash = int(hashlib.sha256(word.encode()).hexdigest(), 16)
            sign = 1 if sign_hash % 2 == 0 else -1

            vector[index] += sign * (1.0 / len(words))

        return self._normalize(vector)

    def _tokenize(self, text: str) -> List[str]:
        """Tokenize text into lowercase alphanumeric words."""
        words = []
        current_word = []

        for char in text.lower():
            if char.isalnum():
                current_word.append(char)
            elif current_word:
                words.append(''.join(current_word))
                current_word = []

        if current_word:
            words.append(''.join(current_word))

        # Filter short words
        return [w for w in words if len(w) > 2]

    def _normalize(self, vector: List[float]) -> List[float]:
        """L2 normalize a vector."""
        magnitude = math.sqrt(sum(x * x for x in vector))
        if magnitude == 0:
            return vector
        return [x / magnitude for x in vector]


class SentenceTransformerEmbedding(EmbeddingProvider):
    """
    Sentence-transformers based embedding provider.

    Runs a local transformer model; requires the optional
    ``sentence-transformers`` dependency.
    """

    # Default model for efficiency
    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: Optional[str] = None, max_input_chars: int = 8000):
        """
        Initialize with a sentence-transformers model.

        Args:
            model_name: Name of the model to use. Defaults to MiniLM.
            max_input_chars: Input truncation limit
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self.max_input_chars = max_input_chars
        self._model = None
        self._dimension = None

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ConfigurationError(
                    "sentence-transformers not installed. "
                    "Install with: pip install session-coordinator[local]"
                ) from e
            self._model = SentenceTransformer(self.model_name)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        if self._dimension is None:
            _ = self.model  # Force load
        return self._dimension or 384  # Default for MiniLM

    async def embed(self, text: str) -> List[float]:
        """Generate embedding using sentence-transformers off the event loop."""
        model = self.model
        try:
            embedding = await asyncio.to_thread(
                model.encode, self.truncate(text), convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingProviderError(f"Failed to generate embedding: {e}", cause=e) from e
        return embedding.tolist()
