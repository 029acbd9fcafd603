"""
Chunking Module

Boundary-aware sliding-window chunking for extracted document text.
"""

from ragcore.chunking.text_chunker import TextChunker, estimate_token_count

__all__ = ["TextChunker", "estimate_token_count"]
