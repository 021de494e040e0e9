"""Exception types raised (or absorbed) while building a route."""
from __future__ import annotations


class RouteGenError(Exception):
    """Base class for route construction failures."""


class RouteValidationError(RouteGenError):
    """Start, end or stop count is malformed. Raised before any external call."""


class SearchUnavailable(RouteGenError):
    """The place-search collaborator failed for the current iteration."""


class InferenceError(RouteGenError):
    """A structured-inference call failed or returned no usable payload.

    Callers absorb this: ranking drops the candidate, weighting falls back to
    the neutral vector.
    """
