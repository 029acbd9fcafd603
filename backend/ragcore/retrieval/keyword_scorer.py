"""
Keyword Scorer

Coarse term-overlap scoring used as the recall-boosting branch of
hybrid search. It is not meant to rank well on its own; it catches
exact terms (names, codes, identifiers) that embeddings blur.

Score = distinct query terms found in the text / distinct query terms
"""

import asyncio
import logging
from typing import List, Optional

from ragcore.models import CandidateVector, ScoredResult
from ragcore.retrieval.cancellation import raise_if_cancelled

logger = logging.getLogger(__name__)


class KeywordScorer:
    """Substring term-overlap scorer."""

    def tokenize(self, text: str) -> List[str]:
        """
        Split a query into distinct lowercase whitespace-separated terms.

        Args:
            text: Text to tokenize

        Returns:
            Distinct terms in first-seen order
        """
        seen = []
        for term in text.lower().split():
            if term not in seen:
                seen.append(term)
        return seen

    def score_text(self, terms: List[str], text: str) -> float:
        """
        Fraction of terms that occur as substrings of text.

        Args:
            terms: Distinct lowercase query terms
            text: Candidate text

        Returns:
            Overlap ratio in [0, 1]
        """
        if not terms or not text:
            return 0.0
        haystack = text.lower()
        matched = sum(1 for term in terms if term in haystack)
        return matched / len(terms)

    def score(
        self,
        query: str,
        candidates: List[CandidateVector],
        top_k: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[ScoredResult]:
        """
        Score candidate texts against the query.

        Args:
            query: Free-text query
            candidates: Candidates carrying text
            top_k: Keep only the best top_k results
            cancel_event: Checked before every candidate

        Returns:
            Non-zero results sorted descending, ties in candidate order,
            with 1-based text_rank set
        """
        terms = self.tokenize(query or "")
        if not terms or not candidates:
            return []

        scored = []
        for candidate in candidates:
            raise_if_cancelled(cancel_event, "keyword scoring")
            if not candidate.text:
                continue
            try:
                score = self.score_text(terms, candidate.text)
            except Exception as e:
                logger.error(f"Keyword scoring failed for candidate {candidate.id}: {e}")
                continue

            if score > 0:
                scored.append((candidate.id, score))

        scored.sort(key=lambda x: x[1], reverse=True)
        if top_k is not None:
            scored = scored[:top_k]

        logger.debug(f"Keyword scoring matched {len(scored)}/{len(candidates)} candidates on {len(terms)} terms")

        return [
            ScoredResult(
                id=candidate_id,
                keyword_score=score,
                combined_score=score,
                text_rank=rank
            )
            for rank, (candidate_id, score) in enumerate(scored, start=1)
        ]
