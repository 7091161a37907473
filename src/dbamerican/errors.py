"""Exception hierarchy.

Only :class:`InvalidInputError` is expected to reach callers for finite,
correctly-signed inputs.  Numerical degeneracies inside the boundary
solvers are recovered where they occur and never raised.
"""

from __future__ import annotations

__all__ = [
    "DoubleBoundaryError",
    "InvalidInputError",
    "EngineError",
]


class DoubleBoundaryError(Exception):
    """Base class for all errors raised by dbamerican."""


class InvalidInputError(DoubleBoundaryError, ValueError):
    """Structurally invalid input: bad contract terms, thresholds or settings."""


class EngineError(DoubleBoundaryError):
    """An injected single-boundary pricing engine failed.

    The engine's own exception is chained as ``__cause__``.
    """
