"""Version-aware hybrid search over the document store.

Lexical (FTS5 bm25) and semantic (sqlite-vec KNN) candidates are merged
with Reciprocal Rank Fusion: ``score = sum(weight / (k + rank))`` over the
rankings a document appears in, ranks starting at 1.
"""

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from observability.prometheus_metrics import record_search_metrics

from .document_store import DocumentStore, normalize_library
from .embeddings import Embedder
from .errors import LibraryNotFoundError, SearchError, VersionNotFoundError
from .versions import VersionConstraint

if TYPE_CHECKING:
    from config.settings import SearchConfig

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    id: int
    url: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    fts_rank: Optional[int] = None
    vec_rank: Optional[int] = None


@dataclass
class FusedCandidate:
    id: int
    score: float
    fts_rank: Optional[int] = None
    vec_rank: Optional[int] = None


def reciprocal_rank_fusion(fts_ids: Sequence[int],
                           vec_ids: Sequence[int],
                           k: int = 60,
                           fts_weight: float = 1.0,
                           vec_weight: float = 1.0) -> List[FusedCandidate]:
    """Fuse two ranked id lists. Ties are broken by ascending id."""
    candidates: Dict[int, FusedCandidate] = {}
    for rank, doc_id in enumerate(fts_ids, start=1):
        candidate = candidates.setdefault(doc_id, FusedCandidate(doc_id, 0.0))
        if candidate.fts_rank is None:
            candidate.fts_rank = rank
            candidate.score += fts_weight / (k + rank)
    for rank, doc_id in enumerate(vec_ids, start=1):
        candidate = candidates.setdefault(doc_id, FusedCandidate(doc_id, 0.0))
        if candidate.vec_rank is None:
            candidate.vec_rank = rank
            candidate.score += vec_weight / (k + rank)
    return sorted(candidates.values(), key=lambda c: (-c.score, c.id))


class HybridSearcher:
    """Runs library/version scoped searches against a ``DocumentStore``."""

    def __init__(self,
                 store: DocumentStore,
                 embedder: Optional[Embedder] = None,
                 rrf_k: int = 60,
                 fts_weight: float = 1.0,
                 vector_weight: float = 1.0,
                 candidate_multiplier: int = 2,
                 default_limit: int = 5):
        if rrf_k < 1:
            raise ValueError("rrf_k must be at least 1")
        if candidate_multiplier < 1:
            raise ValueError("candidate_multiplier must be at least 1")
        if default_limit < 1:
            raise ValueError("default_limit must be at least 1")
        self.store = store
        self.embedder = embedder
        self.rrf_k = rrf_k
        self.fts_weight = fts_weight
        self.vector_weight = vector_weight
        self.candidate_multiplier = candidate_multiplier
        self.default_limit = default_limit

    @classmethod
    def from_config(cls, store: DocumentStore, config: "SearchConfig",
                    embedder: Optional[Embedder] = None) -> "HybridSearcher":
        return cls(
            store,
            embedder,
            rrf_k=config.rrf_k,
            fts_weight=config.fts_weight,
            vector_weight=config.vector_weight,
            candidate_multiplier=config.candidate_multiplier,
            default_limit=config.default_limit,
        )

    def resolve_version(self, library: str, version: Optional[str] = None,
                        exact_match: bool = False) -> Tuple[int, str]:
        """Map a library name and version request to ``(library_id, version)``.

        Raises:
            LibraryNotFoundError: if the library has never been indexed
            VersionNotFoundError: if no indexed version satisfies the request
        """
        library_id = self.store.get_library_id(library)
        if library_id is None:
            raise LibraryNotFoundError(normalize_library(library), self.store.list_library_names())

        available = self.store.query_unique_versions(library)
        try:
            constraint = VersionConstraint.parse(version, exact_match)
        except ValueError as e:
            raise VersionNotFoundError(normalize_library(library), version, available) from e

        best = constraint.best(v for v in available if v)
        if best is not None:
            return library_id, best
        if "" in available and (constraint.allows_unversioned_fallback or not (version or "").strip()):
            logger.info(f"No version of {library} matches {version!r}, using unversioned documents")
            return library_id, ""
        raise VersionNotFoundError(normalize_library(library), version, available)

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embedder.embed, query)

    async def search(self,
                     query: str,
                     library: str,
                     version: Optional[str] = None,
                     limit: Optional[int] = None,
                     exact_match: bool = False) -> List[SearchResult]:
        """Search one library version.

        Args:
            query: Free-text query
            library: Library name
            version: Version or constraint, ``None`` for the latest
            limit: Maximum number of results, ``default_limit`` when omitted
            exact_match: Treat ``version`` as an exact version instead of a constraint

        Returns:
            Results ordered by fused score, highest first
        """
        if limit is None:
            limit = self.default_limit
        search_type = "hybrid" if self.embedder is not None else "fulltext"
        start_time = time.time()
        try:
            library_id, resolved = self.resolve_version(library, version, exact_match)
            candidates = max(limit, 1) * self.candidate_multiplier

            fts_hits = self.store.fts_search(library_id, resolved, query, candidates)
            vec_hits: List[Tuple[int, float]] = []
            query_embedding = await self._embed_query(query)
            if query_embedding is not None:
                vec_hits = self.store.vector_search(library_id, resolved, query_embedding, candidates)

            fused = reciprocal_rank_fusion(
                [doc_id for doc_id, _ in fts_hits],
                [doc_id for doc_id, _ in vec_hits],
                k=self.rrf_k,
                fts_weight=self.fts_weight,
                vec_weight=self.vector_weight,
            )[:limit]

            documents = self.store.get_documents_by_ids([c.id for c in fused])
            results = [
                SearchResult(
                    id=c.id,
                    url=documents[c.id].url,
                    content=documents[c.id].content,
                    metadata=documents[c.id].metadata,
                    score=c.score,
                    fts_rank=c.fts_rank,
                    vec_rank=c.vec_rank,
                )
                for c in fused if c.id in documents
            ]
        except SearchError as e:
            record_search_metrics(search_type, time.time() - start_time, 0, error=str(e))
            raise
        except sqlite3.Error as e:
            record_search_metrics(search_type, time.time() - start_time, 0, error=str(e))
            logger.error(f"Search failed for {library}@{version}: {e}")
            raise SearchError(f"Search failed for {library}: {e}", cause=e) from e

        duration = time.time() - start_time
        record_search_metrics(search_type, duration, len(results))
        logger.info(f"Search {query!r} in {library}@{resolved or 'unversioned'} returned "
                    f"{len(results)} results in {duration:.3f}s ({len(fts_hits)} lexical, "
                    f"{len(vec_hits)} semantic candidates)")
        return results
