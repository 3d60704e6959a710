"""Splits extracted page text into ordered chunks for indexing."""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Tuple

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


@dataclass
class TextChunk:
    """One ordered fragment of a page."""
    content: str
    sort_order: int
    heading_path: List[str] = field(default_factory=list)

    def to_metadata(self) -> Dict[str, Any]:
        """Metadata fields contributed by the chunk itself."""
        return {"path": list(self.heading_path)}


class TextChunker:
    """Heading-aware paragraph packer."""

    def __init__(self, chunk_size: int = 1500, min_chunk_size: int = 1):
        """Initialize chunker.

        Args:
            chunk_size: Maximum chunk length in characters
            min_chunk_size: Chunks shorter than this are dropped
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.min_chunk_size = min_chunk_size

    def _sections(self, text: str) -> List[Tuple[List[str], str]]:
        """Split text at markdown headings, tracking the heading path."""
        sections: List[Tuple[List[str], str]] = []
        path: List[str] = []
        buffer: List[str] = []

        def flush():
            body = "\n".join(buffer).strip()
            if body:
                sections.append((list(path), body))
            buffer.clear()

        for line in text.splitlines():
            match = HEADING_RE.match(line.strip())
            if match:
                flush()
                level = len(match.group(1))
                path = path[:level - 1] + [match.group(2).strip()]
                buffer.append(line.strip())
            else:
                buffer.append(line)
        flush()
        return sections

    def _split_long(self, paragraph: str) -> List[str]:
        pieces = []
        while len(paragraph) > self.chunk_size:
            cut = paragraph.rfind(" ", 0, self.chunk_size)
            if cut <= 0:
                cut = self.chunk_size
            pieces.append(paragraph[:cut].strip())
            paragraph = paragraph[cut:].strip()
        if paragraph:
            pieces.append(paragraph)
        return pieces

    def chunk(self, text: str) -> List[TextChunk]:
        """Chunk text, preserving document order in ``sort_order``."""
        chunks: List[TextChunk] = []
        if not text or not text.strip():
            return chunks

        for path, body in self._sections(text):
            current = ""
            for paragraph in re.split(r"\n\s*\n", body):
                paragraph = paragraph.strip()
                if not paragraph:
                    continue
                for piece in self._split_long(paragraph):
                    if current and len(current) + len(piece) + 2 > self.chunk_size:
                        chunks.append(TextChunk(current, len(chunks), path))
                        current = ""
                    current = f"{current}\n\n{piece}" if current else piece
            if current:
                chunks.append(TextChunk(current, len(chunks), path))

        kept = [c for c in chunks if len(c.content) >= self.min_chunk_size]
        for index, chunk in enumerate(kept):
            chunk.sort_order = index
        logger.debug(f"Split {len(text)} characters into {len(kept)} chunks")
        return kept
