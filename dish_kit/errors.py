"""
Error taxonomy shared by the numeric core and the orchestrator.

Every error is also a builtin (`ValueError` / `RuntimeError`) so callers that
only know the standard exceptions still catch them.
"""

from __future__ import annotations


class DishKitError(Exception):
    """Base class for all dish_kit errors."""


class ModelNotReady(DishKitError, RuntimeError):
    """A required model handle is not loaded."""


class ShapeMismatch(DishKitError, ValueError):
    """A tensor shape violates the precondition of an operation."""


class NegativeExtent(ShapeMismatch):
    """The detector regressed a negative width/height and the policy is `error`."""


class DegenerateDistribution(DishKitError, ValueError):
    """Every classifier score was non-finite, so no distribution exists."""


class ExecutionError(DishKitError, RuntimeError):
    """Model execution failed. The backend message is kept verbatim."""


class FrameNotReady(DishKitError, RuntimeError):
    """The capture device has not produced a usable frame yet."""


class RequestInFlight(DishKitError, RuntimeError):
    """A prediction request is already running on this orchestrator."""


class CameraUnavailable(FrameNotReady):
    """The capture device could not be opened."""
