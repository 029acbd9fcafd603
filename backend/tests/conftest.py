"""
Shared test fixtures.

FakeEmbedder turns text into a bag-of-words vector over a small fixed
vocabulary, so similarities in tests are predictable by hand.
"""

import asyncio
import re
from typing import Dict, List, Optional

import pytest

from ragcore.exceptions import EmbeddingUnavailableError


VOCABULARY = [
    "revenue", "growth", "cash", "profit", "debt", "risk",
    "rain", "sun", "weather", "python", "java", "apple",
]


class FakeEmbedder:
    """Deterministic bag-of-words embedding port."""

    def __init__(self, overrides: Optional[Dict[str, Optional[List[float]]]] = None, delay: float = 0.0):
        self.overrides = overrides or {}
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def vector(self, text: str) -> List[float]:
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(term)) for term in VOCABULARY]

    async def embed(self, text: str) -> Optional[List[float]]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if text in self.overrides:
                return self.overrides[text]
            return self.vector(text)
        finally:
            self.in_flight -= 1


class FailingEmbedder:
    """Embedding port whose provider is down."""

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str) -> Optional[List[float]]:
        self.calls += 1
        raise EmbeddingUnavailableError("provider unavailable")


@pytest.fixture
def embedder():
    """Bag-of-words fake embedder."""
    return FakeEmbedder()


@pytest.fixture
def failing_embedder():
    """Embedder that always fails."""
    return FailingEmbedder()
