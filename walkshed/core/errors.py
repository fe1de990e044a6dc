"""Error taxonomy for the walkshed pipeline.

- InputValidationError: fatal, raised before any computation on bad inputs/settings.
- EngineComputationError: fatal for the run, the coarse join failed inside DuckDB.
- RoutingTransportError: retryable per routing group (network, timeout, 5xx).
- RoutingDataError: the routing engine found no path; pairs are treated as unreachable.
- RoutingRequestError: the engine rejected the request; the group fails without retries.
"""

from __future__ import annotations


class WalkshedError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(WalkshedError, ValueError):
    """Malformed coordinates, missing columns, duplicate ids or invalid settings."""


class EngineComputationError(WalkshedError, RuntimeError):
    """The analytical engine failed to evaluate the coarse-filter join."""


class RoutingTransportError(WalkshedError):
    """Network-level failure talking to the routing engine (retryable)."""


class RoutingUnavailableError(RoutingTransportError):
    """The routing engine cannot be reached at all (fatal pre-flight failure)."""


class RoutingDataError(WalkshedError):
    """The routing engine answered but could not produce a path for the request."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RoutingRequestError(WalkshedError):
    """The routing engine rejected the request itself (not retryable)."""
