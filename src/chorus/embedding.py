"""Embedding backends used for semantic post search."""

from __future__ import annotations

import hashlib
import json
import random
from typing import Protocol


class EmbeddingBackend(Protocol):
    """Protocol for embedding backends."""

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        ...


class LocalEmbedding:
    """Local embedding using sentence-transformers."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        self.model = SentenceTransformer(model_name)
        self._dimensions = self.model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text).tolist()

    @property
    def dimensions(self) -> int:
        return self._dimensions


class OpenAIEmbedding:
    """OpenAI API embedding backend."""

    _MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, model: str = "text-embedding-3-small"):
        from openai import OpenAI

        self.model = model
        self.client = OpenAI()
        self._dimensions = self._MODEL_DIMENSIONS.get(model, 1536)

    def embed(self, text: str) -> list[float]:
        response = self.client.embeddings.create(input=text, model=self.model)
        return response.data[0].embedding

    @property
    def dimensions(self) -> int:
        return self._dimensions


class HashEmbedding:
    """Deterministic, dependency-free embedding backend.

    Vectors carry no meaning; identical texts map to identical vectors.
    Intended for tests and environments without ML dependencies.
    """

    def __init__(self, dimensions: int = 384):
        self._dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        rng = random.Random(int.from_bytes(digest[:8], "big", signed=False))
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimensions)]

    @property
    def dimensions(self) -> int:
        return self._dimensions


def create_embedding_backend(
    backend: str,
    local_model: str = "all-MiniLM-L6-v2",
    openai_model: str = "text-embedding-3-small",
) -> EmbeddingBackend:
    """Instantiate the backend named by a config value."""
    if backend == "openai":
        return OpenAIEmbedding(model=openai_model)
    if backend == "hash":
        return HashEmbedding()
    if backend == "local":
        return LocalEmbedding(model_name=local_model)
    raise ValueError(f"Unknown embedding backend: {backend}")


def serialize_vector(vec: list[float]) -> str:
    """Serialize a vector to JSON for sqlite-vec."""
    return json.dumps(vec)
