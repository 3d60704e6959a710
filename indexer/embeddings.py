# docscope embeddings
# Vectors stored in documents_vec always have EMBEDDING_DIMENSION entries

import logging
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence

import numpy as np

if TYPE_CHECKING:
    from config.settings import EmbeddingConfig

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 1536


class Embedder(Protocol):
    """Produces fixed-size embedding vectors for text."""

    def embed(self, text: str) -> List[float]:
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def pad_embedding(vector: Sequence[float], dimension: int = EMBEDDING_DIMENSION) -> List[float]:
    """Zero-pad a model vector to the stored dimension.

    Raises:
        ValueError: if the vector is longer than ``dimension``
    """
    array = np.asarray(vector, dtype=np.float32).ravel()
    if array.shape[0] > dimension:
        raise ValueError(f"Embedding dimension {array.shape[0]} exceeds maximum {dimension}")
    if array.shape[0] < dimension:
        array = np.pad(array, (0, dimension - array.shape[0]))
    return array.tolist()


class SentenceTransformerEmbedder:
    """Embeds text with a sentence-transformers model.

    Requires the ``embeddings`` extra. Model output is zero-padded to
    ``EMBEDDING_DIMENSION``.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32,
                 normalize: bool = True, device: Optional[str] = None):
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.batch_size = batch_size
        self.normalize = normalize
        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name, device=device)
        self.dimension = self.model.get_sentence_embedding_dimension()
        if self.dimension > EMBEDDING_DIMENSION:
            raise ValueError(f"Model {model_name} produces {self.dimension}-dimensional vectors, "
                             f"maximum is {EMBEDDING_DIMENSION}")
        logger.info(f"Model loaded successfully. Embedding dimension: {self.dimension}")

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        cleaned = [text.strip() if text else "" for text in texts]
        vectors = self.model.encode(cleaned, batch_size=self.batch_size, convert_to_numpy=True,
                                    normalize_embeddings=self.normalize, show_progress_bar=False)
        return [pad_embedding(v) for v in vectors]


def create_embedder(provider: str, model_name: str, batch_size: int = 32) -> Optional[Embedder]:
    """Build the configured embedder. ``none`` disables vector search."""
    provider = provider.lower()
    if provider in ("", "none"):
        logger.info("No embedding provider configured, search runs lexical-only")
        return None
    if provider == "sentence-transformers":
        return SentenceTransformerEmbedder(model_name, batch_size=batch_size)
    raise ValueError(f"Unknown embedding provider: {provider}")


def embedder_from_config(config: "EmbeddingConfig") -> Optional[Embedder]:
    return create_embedder(config.provider, config.model_name, config.batch_size)
