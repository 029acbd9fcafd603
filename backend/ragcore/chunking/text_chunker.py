"""
Text Chunker

Boundary-aware sliding-window chunking for extracted document text.
Runs at ingestion time; the chunks it produces are read-only afterwards.

Key features:
- Prefers to cut at a sentence terminator (., !, ?)
- Falls back to the last space, then to a hard cut
- Fixed character overlap between consecutive chunks
- Offsets into the source text for every chunk

Usage:
    chunker = TextChunker(chunk_size=1000, chunk_overlap=200)
    chunks = chunker.chunk_document("doc_42", document_text)
"""

import math
import logging
from typing import List, Tuple

from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import Chunk

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = ".!?"
CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """
    Rough token estimate (1 token ~ 4 characters).

    Args:
        text: Text to estimate

    Returns:
        Estimated token count, 0 for blank text
    """
    if not text or not text.strip():
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TextChunker:
    """
    Sliding-window chunker with sentence and word boundary detection.

    Chunking strategy:
    1. Open a window of chunk_size characters
    2. Look back up to boundary_window characters for a sentence end
    3. Otherwise look back for a space
    4. Otherwise cut at the window edge
    5. Start the next window overlap characters before the cut
    """

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        boundary_window: int = None
    ):
        """
        Initialize text chunker.

        Args:
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters shared by consecutive chunks
            boundary_window: How far back to look for a boundary
        """
        self.chunk_size = chunk_size if chunk_size is not None else settings.CHUNK_SIZE
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else settings.CHUNK_OVERLAP
        self.boundary_window = boundary_window if boundary_window is not None else settings.CHUNK_BOUNDARY_WINDOW
        self._validate(self.chunk_size, self.chunk_overlap)

    @staticmethod
    def _validate(chunk_size: int, overlap: int) -> None:
        if chunk_size <= 0:
            raise InvalidParameterError(f"Chunk size must be positive, got {chunk_size}")
        if overlap < 0:
            raise InvalidParameterError(f"Overlap must not be negative, got {overlap}")
        if overlap >= chunk_size:
            raise InvalidParameterError(
                f"Overlap ({overlap}) must be less than chunk size ({chunk_size})"
            )

    def chunk_text(
        self,
        text: str,
        chunk_size: int = None,
        overlap: int = None
    ) -> List[str]:
        """
        Split text into overlapping chunks.

        Args:
            text: Text to chunk
            chunk_size: Override for the maximum characters per chunk
            overlap: Override for the overlap

        Returns:
            List of trimmed, non-empty chunk strings
        """
        return [text[start:end] for start, end in self._spans(text, chunk_size, overlap)]

    def chunk_document(
        self,
        document_id: str,
        text: str,
        chunk_size: int = None,
        overlap: int = None
    ) -> List[Chunk]:
        """
        Chunk a document into Chunk records.

        Args:
            document_id: ID of the source document
            text: Extracted document text
            chunk_size: Override for the maximum characters per chunk
            overlap: Override for the overlap

        Returns:
            List of Chunk objects without embeddings
        """
        chunks = []
        for i, (start, end) in enumerate(self._spans(text, chunk_size, overlap)):
            content = text[start:end]
            chunks.append(Chunk(
                document_id=document_id,
                chunk_index=i,
                text=content,
                start_offset=start,
                end_offset=end,
                token_estimate=estimate_token_count(content)
            ))

        logger.info(f"Created {len(chunks)} chunks for document {document_id} ({len(text or '')} chars)")
        return chunks

    def _spans(
        self,
        text: str,
        chunk_size: int = None,
        overlap: int = None
    ) -> List[Tuple[int, int]]:
        """
        Compute (start, end) offsets of each trimmed chunk.

        Args:
            text: Source text
            chunk_size: Maximum characters per window
            overlap: Characters to step back after each cut

        Returns:
            List of offsets; text[start:end] is the chunk text
        """
        chunk_size = chunk_size if chunk_size is not None else self.chunk_size
        overlap = overlap if overlap is not None else self.chunk_overlap
        self._validate(chunk_size, overlap)

        if not text or not text.strip():
            return []

        spans = []
        length = len(text)
        position = 0

        while position < length:
            end = min(position + chunk_size, length)

            if end < length:
                end = self._find_boundary(text, position, end)

            span = self._trim(text, position, end)
            if span is not None:
                spans.append(span)

            if end >= length:
                break

            next_position = end - overlap
            # The window may have shrunk below the overlap at a boundary
            if next_position <= position:
                next_position = end
            position = next_position

        return spans

    def _find_boundary(self, text: str, position: int, end: int) -> int:
        """
        Move a window end back to a sentence or word boundary.

        Args:
            text: Source text
            position: Window start
            end: Raw window end (exclusive)

        Returns:
            Adjusted window end (exclusive)
        """
        search_start = max(position, end - self.boundary_window)

        boundary = max(text.rfind(ch, search_start, end) for ch in SENTENCE_TERMINATORS)
        if boundary > search_start:
            return boundary + 1

        space_floor = end - min(self.boundary_window, end - position)
        last_space = text.rfind(" ", space_floor, end)
        if last_space > position:
            return last_space

        return end

    @staticmethod
    def _trim(text: str, start: int, end: int):
        """Shrink a span to exclude surrounding whitespace; None if nothing is left."""
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if start >= end:
            return None
        return start, end

    def estimate_token_count(self, text: str) -> int:
        """Estimate tokens for text (see module-level estimate_token_count)."""
        return estimate_token_count(text)
