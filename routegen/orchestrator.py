# routegen/orchestrator.py
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from pydantic import ValidationError

from routegen.agents.candidate_ranking import CandidateRanker, build_ranker
from routegen.agents.candidate_selection import DEFAULT_EXPONENT, select_best
from routegen.agents.preference_weighting import find_weights
from routegen.config import Settings
from routegen.errors import RouteValidationError
from routegen.geometry import (
    average_radius,
    bounding_rectangle,
    construct_region,
    distance,
    is_too_far_away,
)
from routegen.history import PreferenceHistoryStore, normalize_history
from routegen.llm import StructuredInferenceClient
from routegen.schemas import (
    Candidate,
    CandidatePool,
    Coordinate,
    PreferenceVector,
    RouteRequest,
    RouteResult,
    SearchRegion,
)
from routegen.tools.places import PlaceResolver, PlaceSearch, PlaceSearcher

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ROUTEGEN_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

LOOP_HARD_CAP = 23
# Winners must get at least this much closer to the end than the current point.
MIN_PROGRESS_KM = 1.0
# The search rectangle is shrunk by this much so places on its edge are not missed.
RECTANGLE_SHRINK_KM = 1.0
FIRST_KEY = 1


def max_iterations(stop_count: int) -> int:
    return min(2 * stop_count, LOOP_HARD_CAP)


def prioritize_distance(distance_weight: float, preference_weight: float) -> Tuple[float, float]:
    """Shift selection toward distance when the route falls short of the end.

    Pre: both weights are non-negative. Post: the distance weight grows by 8/5
    and the preference weight shrinks by 4/5, so the distance/preference ratio
    doubles each time this runs.
    """
    return (8 * distance_weight) / 5, (4 * preference_weight) / 5


def final_stop_extension(point: Coordinate, end: Coordinate, avg_radius: float) -> int:
    """Number of extra stops to add when the final stop is still too far out.

    Pre: ``is_too_far_away(point, end, avg_radius)`` holds. Always one more
    stop for now; the iteration cap bounds how often it can repeat.
    """
    return 1


@dataclass
class RouteBuildState:
    start: Coordinate
    end: Coordinate
    current_point: Coordinate
    remaining_stops: int
    distance_weight: float
    preference_weight: float
    total_iterations_run: int = 0
    search_radius_accumulator: float = 0.0
    widening: bool = False
    next_key: int = FIRST_KEY
    chosen_waypoints: Dict[str, Coordinate] = field(default_factory=dict)
    candidate_pool: CandidatePool = field(default_factory=CandidatePool)


class RouteBuilder:
    """Search, rank and select one waypoint per step between start and end.

    Collaborators are injected; one builder can serve many builds because all
    per-build data lives in a fresh ``RouteBuildState``.
    """

    def __init__(
        self,
        searcher: PlaceSearch,
        ranker: CandidateRanker,
        inference: StructuredInferenceClient,
        history_store: Optional[PreferenceHistoryStore] = None,
        *,
        distance_weight: float = 200.0,
        preference_weight: float = 1.0,
        sharpening_exponent: float = DEFAULT_EXPONENT,
    ) -> None:
        self.searcher = searcher
        self.ranker = ranker
        self.inference = inference
        self.history_store = history_store
        self.distance_weight = distance_weight
        self.preference_weight = preference_weight
        self.sharpening_exponent = sharpening_exponent

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        history_store: Optional[PreferenceHistoryStore] = None,
    ) -> "RouteBuilder":
        inference = StructuredInferenceClient.from_settings(settings)
        searcher = PlaceSearcher.from_settings(settings)
        ranker = build_ranker(
            settings.ranking_strategy,
            inference,
            concurrency=settings.ranking_concurrency,
            min_delay=settings.serial_min_delay,
            max_delay=settings.serial_max_delay,
        )
        return cls(
            searcher,
            ranker,
            inference,
            history_store,
            distance_weight=settings.distance_weight,
            preference_weight=settings.preference_weight,
            sharpening_exponent=settings.sharpening_exponent,
        )

    async def aclose(self) -> None:
        await self.inference.aclose()

    async def build(
        self,
        request: RouteRequest | Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
        history: Optional[Sequence[float]] = None,
    ) -> RouteResult:
        req = _validate_request(request)
        stop_count = req.stop_count
        end = req.end

        initial_distance = distance(req.start, end)
        avg_radius = average_radius(req.start, end, stop_count)
        loop_cap = max_iterations(stop_count)
        logger.info(
            "Route build start: %d stop(s), %.2f km, average radius %.2f km, iteration cap %d",
            stop_count,
            initial_distance,
            avg_radius,
            loop_cap,
        )

        weights = await find_weights(req.preference_text, self.inference)
        user_history = await self._resolve_history(user_id, history)

        state = RouteBuildState(
            start=req.start,
            end=end,
            current_point=req.start,
            remaining_stops=stop_count,
            distance_weight=req.distance_weight if req.distance_weight is not None else self.distance_weight,
            preference_weight=(
                req.preference_weight if req.preference_weight is not None else self.preference_weight
            ),
        )

        aborted = False
        i = 0
        while i < stop_count:
            if state.total_iterations_run >= loop_cap:
                logger.warning(
                    "Stopping route search after %d iterations with %d/%d stops chosen",
                    state.total_iterations_run,
                    len(state.chosen_waypoints),
                    stop_count,
                )
                aborted = True
                break
            state.total_iterations_run += 1
            state.remaining_stops = stop_count - i
            logger.info("Iteration %d (stop %d/%d)", state.total_iterations_run, i + 1, stop_count)

            region = self._next_region(state)
            found, next_key = await self.searcher.search(region, req.preference_text, state.next_key)
            ranked = await self.ranker.rank(found, req.preference_text)

            winner = self._pick(ranked, weights, user_history, state, initial_distance)
            if winner is None:
                state.widening = True
                continue

            state.candidate_pool.merge(ranked)
            state.chosen_waypoints[winner.id] = winner.coordinate
            state.next_key = next_key
            state.widening = False
            state.current_point = winner.coordinate
            logger.info(
                "Chose id=%s (%s) at (%.5f, %.5f)",
                winner.id,
                winner.display_name,
                winner.coordinate.latitude,
                winner.coordinate.longitude,
            )

            step = 1
            if i == stop_count - 1 and is_too_far_away(winner.coordinate, end, avg_radius):
                state.distance_weight, state.preference_weight = prioritize_distance(
                    state.distance_weight, state.preference_weight
                )
                step -= final_stop_extension(winner.coordinate, end, avg_radius)
                logger.info(
                    "Final stop still %.2f km from the end; adding a stop (weights now %.2f/%.2f)",
                    distance(winner.coordinate, end),
                    state.distance_weight,
                    state.preference_weight,
                )
            i += step

        for candidate_id in state.chosen_waypoints:
            state.candidate_pool.mark_on_route(candidate_id)

        logger.info(
            "Route build done: %d waypoint(s), %d candidate(s) in pool, %d iteration(s)",
            len(state.chosen_waypoints),
            len(state.candidate_pool),
            state.total_iterations_run,
        )
        return RouteResult(
            chosen_waypoints=dict(state.chosen_waypoints),
            candidate_pool=state.candidate_pool,
            iterations=state.total_iterations_run,
            aborted=aborted,
        )

    async def _resolve_history(
        self, user_id: Optional[str], history: Optional[Sequence[float]]
    ) -> List[float]:
        if history is not None:
            return normalize_history(history)
        if self.history_store is not None and user_id:
            return normalize_history(await self.history_store.get_history(user_id))
        return normalize_history(None)

    def _next_region(self, state: RouteBuildState) -> SearchRegion:
        sub_goal, radius = construct_region(state.current_point, state.end, state.remaining_stops)
        if state.widening:
            state.search_radius_accumulator += radius
        else:
            state.search_radius_accumulator = radius
        search_radius = state.search_radius_accumulator

        if state.widening:
            corner_radius = search_radius
        else:
            corner_radius = min(search_radius, distance(state.current_point, sub_goal))
        rectangle = bounding_rectangle(sub_goal, corner_radius - RECTANGLE_SHRINK_KM)
        logger.debug(
            "Region center (%.5f, %.5f), radius %.2f km, widening=%s",
            sub_goal.latitude,
            sub_goal.longitude,
            search_radius,
            state.widening,
        )
        return SearchRegion(center=sub_goal, radius_km=search_radius, rectangle=rectangle)

    def _pick(
        self,
        ranked: CandidatePool,
        weights: PreferenceVector,
        user_history: Sequence[float],
        state: RouteBuildState,
        initial_distance: float,
    ) -> Optional[Candidate]:
        """Return the winner, or ``None`` when it would not move the route forward."""
        if len(ranked) == 0:
            logger.info("No ranked candidates in this region; widening the search")
            return None

        winner = select_best(
            ranked,
            weights,
            user_history,
            state.end,
            initial_distance,
            state.distance_weight,
            state.preference_weight,
            self.sharpening_exponent,
        )
        remaining = distance(state.current_point, state.end)
        if distance(winner.coordinate, state.end) >= remaining - MIN_PROGRESS_KM:
            logger.info("Invalid place chosen (id=%s); widening the search", winner.id)
            return None
        return winner


def _validate_request(request: RouteRequest | Mapping[str, Any]) -> RouteRequest:
    if isinstance(request, RouteRequest):
        return request
    try:
        return RouteRequest.model_validate(dict(request))
    except ValidationError as exc:
        raise RouteValidationError(str(exc)) from exc
    except TypeError as exc:
        raise RouteValidationError(f"Unsupported request payload: {exc}") from exc


async def resolve_place_names(
    request: RouteRequest | Mapping[str, Any], resolver: PlaceResolver
) -> RouteRequest | Dict[str, Any]:
    """Replace a free-text ``start`` or ``end`` with the coordinate it names.

    Coordinates and ``RouteRequest`` instances pass through untouched. Both
    names are looked up concurrently.
    """
    if isinstance(request, RouteRequest):
        return request
    try:
        payload = dict(request)
    except (TypeError, ValueError) as exc:
        raise RouteValidationError(f"Unsupported request payload: {exc}") from exc

    names = {key: payload[key] for key in ("start", "end") if isinstance(payload.get(key), str)}
    if not names:
        return payload

    resolved = await asyncio.gather(*(resolver.resolve_place(name) for name in names.values()))
    for key, (coordinate, place_id) in zip(names, resolved):
        logger.info("Using %s for %s %r", place_id, key, names[key])
        payload[key] = coordinate
    return payload


async def build_route(
    request: RouteRequest | Mapping[str, Any],
    *,
    settings: Optional[Settings] = None,
    history_store: Optional[PreferenceHistoryStore] = None,
    user_id: Optional[str] = None,
    history: Optional[Sequence[float]] = None,
    resolver: Optional[PlaceResolver] = None,
) -> RouteResult:
    """Validate the request, wire collaborators from settings and run one build.

    ``start`` and ``end`` may be place names; they are resolved through
    ``resolver`` (a settings-built ``PlaceSearcher`` by default) first.
    The inference client opened for this build is closed before returning.
    """
    settings = settings or Settings.from_env()
    payload = await resolve_place_names(request, resolver or PlaceSearcher.from_settings(settings))
    req = _validate_request(payload)
    builder = RouteBuilder.from_settings(settings, history_store)
    try:
        return await builder.build(req, user_id=user_id, history=history)
    finally:
        await builder.aclose()
