import math

import pytest

from routegen.agents.candidate_selection import candidate_score, preference_score, select_best
from routegen.geometry import EARTH_RADIUS_KM
from routegen.schemas import METRIC_ORDER, Candidate, CandidatePool, Coordinate, MetricVector, PreferenceVector

DESTINATION = Coordinate(latitude=0.0, longitude=0.0)
ZERO_HISTORY = [0.0] * 8


def _at_km(km: float) -> Coordinate:
    """Point on the equator ``km`` east of the destination."""
    return Coordinate(latitude=0.0, longitude=math.degrees(km / EARTH_RADIUS_KM))


def _metrics(default: int = 1, **overrides: int) -> MetricVector:
    values = {name: default for name in METRIC_ORDER}
    values.update(overrides)
    return MetricVector(**values)


def _ranked(cid: str, km: float, metrics: MetricVector) -> Candidate:
    return Candidate(id=cid, coordinate=_at_km(km), metric_vector=metrics)


def _weights(default: float, **overrides: float) -> PreferenceVector:
    values = {name: default for name in METRIC_ORDER}
    values.update(overrides)
    return PreferenceVector(**values)


def test_preference_score_aligns_metrics_and_weights_by_name():
    metrics = _metrics(romantic=10)
    weights = _weights(0.1, romantic=0.9)

    # 10 * 0.9 + 7 * (1 * 0.1)
    assert preference_score(metrics, weights, ZERO_HISTORY, exponent=1.0) == pytest.approx(9.7)


def test_preference_score_history_is_positional_in_metric_order():
    metrics = _metrics(romantic=10)
    weights = _weights(0.1, romantic=0.9)
    history = [1.0] + [0.0] * 7  # first slot is "romantic"

    # previous 9.7 plus 10 * 0.5 * 1
    assert preference_score(metrics, weights, history, exponent=1.0) == pytest.approx(14.7)


def test_preference_score_with_neutral_history():
    metrics = _metrics(default=2)
    weights = _weights(0.5)

    # 8 * 2 * (0.5 + 0.5 * 5)
    assert preference_score(metrics, weights, [5.0] * 8, exponent=1.0) == pytest.approx(48.0)


def test_preference_score_sharpening_exponent():
    metrics = _metrics(default=1)
    weights = _weights(0.25, cultural=0.81)

    # 7 * 0.25**1.5 + 0.81**1.5 = 7 * 0.125 + 0.729
    assert preference_score(metrics, weights, ZERO_HISTORY) == pytest.approx(1.604)


def test_selection_trades_distance_against_preference():
    weights = _weights(0.25, cultural=0.81)
    near_weak = _ranked("1", 10.0, _metrics(default=1))
    far_strong = _ranked("2", 50.0, _metrics(default=1, cultural=10))
    pool = CandidatePool([near_weak, far_strong])

    # dis_w=10: near = 10*0.9 + 1.604 = 10.604 ; far = 10*0.5 + 8.165 = 13.165
    assert candidate_score(near_weak, weights, ZERO_HISTORY, DESTINATION, 100.0, 10.0, 1.0) == pytest.approx(10.604)
    assert candidate_score(far_strong, weights, ZERO_HISTORY, DESTINATION, 100.0, 10.0, 1.0) == pytest.approx(13.165)
    assert select_best(pool, weights, ZERO_HISTORY, DESTINATION, 100.0, 10.0, 1.0).id == "2"

    # dis_w=20: near = 18 + 1.604 = 19.604 ; far = 10 + 8.165 = 18.165
    assert select_best(pool, weights, ZERO_HISTORY, DESTINATION, 100.0, 20.0, 1.0).id == "1"


def test_ties_go_to_first_candidate():
    weights = _weights(0.5)
    pool = CandidatePool(
        [
            _ranked("7", 20.0, _metrics(default=5)),
            _ranked("3", 20.0, _metrics(default=5)),
        ]
    )
    assert select_best(pool, weights, ZERO_HISTORY, DESTINATION, 100.0, 1.0, 1.0).id == "7"


def test_empty_pool_is_rejected():
    with pytest.raises(ValueError):
        select_best(CandidatePool(), _weights(0.5), ZERO_HISTORY, DESTINATION, 100.0, 1.0, 1.0)


def test_unranked_candidate_is_rejected():
    pool = CandidatePool([Candidate(id="1", coordinate=_at_km(5.0))])
    with pytest.raises(ValueError):
        select_best(pool, _weights(0.5), ZERO_HISTORY, DESTINATION, 100.0, 1.0, 1.0)


def test_non_finite_scores_raise_value_error():
    pool = CandidatePool([_ranked("1", 10.0, _metrics()), _ranked("2", 20.0, _metrics())])

    with pytest.raises(ValueError):
        select_best(pool, _weights(0.5), [float("nan")] * 8, DESTINATION, 100.0, 200.0, 1.0)
