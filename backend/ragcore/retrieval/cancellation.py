"""Cooperative cancellation checks shared by the pipeline stages."""

import asyncio
from typing import Optional

from ragcore.exceptions import RetrievalCancelledError


def raise_if_cancelled(cancel_event: Optional[asyncio.Event], stage: str) -> None:
    """
    Abort the current stage when the caller has set the cancellation event.

    Args:
        cancel_event: Shared cancellation signal (may be None)
        stage: Stage name reported in the error
    """
    if cancel_event is not None and cancel_event.is_set():
        raise RetrievalCancelledError(f"Retrieval cancelled during {stage}")
