"""Pick the next waypoint from a ranked candidate pool."""
from __future__ import annotations

from typing import Sequence

from routegen.geometry import distance
from routegen.schemas import METRIC_ORDER, Candidate, CandidatePool, Coordinate, MetricVector, PreferenceVector

DEFAULT_EXPONENT = 1.5


def preference_score(
    metrics: MetricVector,
    weights: PreferenceVector,
    history: Sequence[float],
    exponent: float = DEFAULT_EXPONENT,
) -> float:
    """Σ metric × (weight ** exponent + 0.5 × history) over the eight metrics.

    Metrics and weights are matched by name. ``history`` is positional in
    ``METRIC_ORDER``; missing trailing entries count as 0.
    """
    total = 0.0
    for slot, name in enumerate(METRIC_ORDER):
        nudge = history[slot] if slot < len(history) else 0.0
        total += getattr(metrics, name) * (getattr(weights, name) ** exponent + 0.5 * nudge)
    return total


def candidate_score(
    candidate: Candidate,
    weights: PreferenceVector,
    history: Sequence[float],
    destination: Coordinate,
    initial_distance: float,
    distance_weight: float,
    preference_weight: float,
    exponent: float = DEFAULT_EXPONENT,
) -> float:
    if candidate.metric_vector is None:
        raise ValueError(f"candidate {candidate.id} has not been ranked")
    progress = 1 - distance(candidate.coordinate, destination) / initial_distance
    return distance_weight * progress + preference_weight * preference_score(
        candidate.metric_vector, weights, history, exponent
    )


def select_best(
    ranked: CandidatePool,
    weights: PreferenceVector,
    history: Sequence[float],
    destination: Coordinate,
    initial_distance: float,
    distance_weight: float,
    preference_weight: float,
    exponent: float = DEFAULT_EXPONENT,
) -> Candidate:
    """Return the highest-scoring candidate; the earliest one wins ties."""
    if len(ranked) == 0:
        raise ValueError("cannot select from an empty candidate pool")
    if initial_distance <= 0:
        raise ValueError("initial_distance must be positive")

    best: Candidate | None = None
    best_score = float("-inf")
    for _, candidate in ranked:
        score = candidate_score(
            candidate,
            weights,
            history,
            destination,
            initial_distance,
            distance_weight,
            preference_weight,
            exponent,
        )
        if score > best_score:
            best, best_score = candidate, score
    if best is None:
        raise ValueError("no candidate produced a finite score")
    return best
