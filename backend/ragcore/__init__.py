"""
ragcore

Retrieval core for retrieval-augmented answering: turns a free-text
query into ranked, deduplicated, token-budgeted passages.

Version: 0.1.0
"""

__version__ = "0.1.0"
