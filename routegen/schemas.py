from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Key order of the ranking schema; user history vectors are positional in this order.
METRIC_ORDER: Tuple[str, ...] = (
    "romantic",
    "adventurous",
    "relaxation",
    "cultural",
    "gastronomic",
    "nature",
    "entertaining",
    "modern",
)

# Key order the preference-weighting prompt asks for.
WEIGHT_ORDER: Tuple[str, ...] = (
    "cultural",
    "relaxation",
    "gastronomic",
    "nature",
    "modern",
    "entertaining",
    "romantic",
    "adventurous",
)

NEUTRAL_HISTORY: Tuple[float, ...] = (5.0,) * len(METRIC_ORDER)

# ------- Geometry -------
class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

class BoundingRectangle(BaseModel):
    model_config = ConfigDict(frozen=True)

    low: Coordinate   # SW corner
    high: Coordinate  # NE corner

class SearchRegion(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: Coordinate
    radius_km: float
    rectangle: BoundingRectangle

# ------- Scoring vectors -------
class MetricVector(BaseModel):
    """Per-candidate integer scores produced once by ranking."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    romantic: int = Field(..., ge=1, le=10)
    adventurous: int = Field(..., ge=1, le=10)
    relaxation: int = Field(..., ge=1, le=10)
    cultural: int = Field(..., ge=1, le=10)
    gastronomic: int = Field(..., ge=1, le=10)
    nature: int = Field(..., ge=1, le=10)
    entertaining: int = Field(..., ge=1, le=10)
    modern: int = Field(..., ge=1, le=10)

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in METRIC_ORDER}

class PreferenceVector(BaseModel):
    """Per-build float weights derived from the free-text preference."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cultural: float = Field(0.5, ge=0.1, le=0.9)
    relaxation: float = Field(0.5, ge=0.1, le=0.9)
    gastronomic: float = Field(0.5, ge=0.1, le=0.9)
    nature: float = Field(0.5, ge=0.1, le=0.9)
    modern: float = Field(0.5, ge=0.1, le=0.9)
    entertaining: float = Field(0.5, ge=0.1, le=0.9)
    romantic: float = Field(0.5, ge=0.1, le=0.9)
    adventurous: float = Field(0.5, ge=0.1, le=0.9)

    @classmethod
    def neutral(cls) -> "PreferenceVector":
        return cls()

    def as_list(self) -> List[float]:
        return [getattr(self, name) for name in WEIGHT_ORDER]

# ------- Candidates -------
class Candidate(BaseModel):
    id: str
    coordinate: Coordinate
    display_name: str = "(no name)"
    external_ref: Optional[str] = None
    review_snippets: List[str] = Field(default_factory=list, max_length=3)
    metric_vector: Optional[MetricVector] = None
    on_route: bool = False

class CandidatePool:
    """Ordered ``(id, Candidate)`` sequence with a lookup index.

    Iteration follows insertion order. Adding an id that is already present
    replaces the candidate but keeps its original position.
    """

    def __init__(self, candidates: Optional[List[Candidate]] = None) -> None:
        self._order: List[str] = []
        self._index: Dict[str, Candidate] = {}
        for candidate in candidates or []:
            self.add(candidate)

    def add(self, candidate: Candidate) -> None:
        if candidate.id not in self._index:
            self._order.append(candidate.id)
        self._index[candidate.id] = candidate

    def merge(self, other: "CandidatePool") -> None:
        for candidate in other.values():
            self.add(candidate)

    def get(self, candidate_id: str) -> Optional[Candidate]:
        return self._index.get(candidate_id)

    def __getitem__(self, candidate_id: str) -> Candidate:
        return self._index[candidate_id]

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._index

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Tuple[str, Candidate]]:
        for candidate_id in self._order:
            yield candidate_id, self._index[candidate_id]

    def ids(self) -> List[str]:
        return list(self._order)

    def values(self) -> List[Candidate]:
        return [self._index[candidate_id] for candidate_id in self._order]

    def mark_on_route(self, candidate_id: str) -> None:
        self._index[candidate_id].on_route = True

# ------- Request / response -------
class RouteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: Coordinate
    end: Coordinate
    stop_count: int = Field(..., ge=1)
    preference_text: str = ""
    distance_weight: Optional[float] = None
    preference_weight: Optional[float] = None

    @model_validator(mode="after")
    def _distinct_endpoints(self) -> "RouteRequest":
        if self.start == self.end:
            raise ValueError("start and end must be different coordinates")
        return self

class RouteResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    chosen_waypoints: Dict[str, Coordinate] = Field(default_factory=dict)
    candidate_pool: CandidatePool = Field(default_factory=CandidatePool)
    iterations: int = 0
    aborted: bool = False

    def locations(self) -> List[Dict[str, Any]]:
        """Flatten the pool into the recommendation list stored for the user."""
        return [
            {
                "latitude": candidate.coordinate.latitude,
                "longitude": candidate.coordinate.longitude,
                "isOnTheRoute": candidate.on_route,
                "placeId": candidate.external_ref,
            }
            for _, candidate in self.candidate_pool
        ]
