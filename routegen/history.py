"""Read-only access to a user's historical preference vector."""
from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from routegen.schemas import METRIC_ORDER, NEUTRAL_HISTORY


class PreferenceHistoryStore(Protocol):
    async def get_history(self, user_id: str) -> List[float]:
        ...


def normalize_history(values: Optional[Sequence[float]]) -> List[float]:
    """Return exactly eight floats on the 1..10 metric scale.

    ``None``, a vector of the wrong length or one holding a non-finite
    value gives the neutral vector.
    """
    if values is None or len(values) != len(METRIC_ORDER):
        return list(NEUTRAL_HISTORY)
    floats = [float(v) for v in values]
    if not all(math.isfinite(v) for v in floats):
        return list(NEUTRAL_HISTORY)
    return floats


class InMemoryHistoryStore:
    """Dict-backed store; unknown users get the neutral vector."""

    def __init__(self, histories: Optional[Mapping[str, Sequence[float]]] = None) -> None:
        self._histories: Dict[str, List[float]] = {
            user_id: normalize_history(values) for user_id, values in (histories or {}).items()
        }

    async def get_history(self, user_id: str) -> List[float]:
        return list(self._histories.get(user_id, NEUTRAL_HISTORY))
