"""Sentence embeddings for key-point deduplication."""

import asyncio
import logging

import numpy as np
from sentence_transformers import SentenceTransformer

from article_lens.config import DEFAULT_ANALYSIS_CONFIG
from article_lens.services.embedding_cache import EmbeddingCache, get_embedding_cache

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = DEFAULT_ANALYSIS_CONFIG.embedding_model


class TextEmbedder:
    """Lazily loaded sentence-transformers model with a content-hash cache in front."""

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        cache: EmbeddingCache | None = None,
        prefix: str = "clustering",
    ):
        self.model_name = model_name
        self.prefix = prefix
        self._cache = cache or get_embedding_cache()
        self._model: SentenceTransformer | None = None

    def _get_model(self) -> SentenceTransformer:
        """Lazy-load the embedding model."""
        if self._model is None:
            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name, trust_remote_code=True)
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        # Nomic models require a task prefix
        prefixed = [f"{self.prefix}: {t}" for t in texts]
        embeddings = self._get_model().encode(prefixed, show_progress_bar=False)
        return [e.tolist() for e in embeddings]

    async def embed(self, text: str) -> list[float]:
        async def compute() -> list[float]:
            vectors = await asyncio.to_thread(self._encode, [text])
            return vectors[0]

        return await self._cache.get_or_compute(f"{self.model_name}\n{text}", compute)

    async def embed_many(self, texts: list[str]) -> np.ndarray:
        """Row-per-text matrix of embeddings."""
        vectors = [await self.embed(t) for t in texts]
        return np.asarray(vectors, dtype=np.float32)
