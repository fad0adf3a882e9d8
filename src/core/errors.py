"""Error taxonomy for the belief and decision engine.

Three families of failure are distinguished:

* :class:`InvalidParameterError` -- a caller handed in something that can
  never be valid (non-positive Beta shape, mismatched array lengths).
* :class:`OutOfBoundsError` -- a target coordinate lies outside the grid.
* :class:`NumericalDegenerateError` -- an intermediate value became
  non-finite.  Sweeps turn this into a failed candidate rather than
  aborting the whole pass.
"""

from __future__ import annotations


class EngineError(Exception):
    """Root of all errors raised by the engine."""


class InvalidParameterError(EngineError, ValueError):
    """Raised when a parameter is structurally invalid."""


class OutOfBoundsError(EngineError, IndexError):
    """Raised when a coordinate falls outside the grid extent."""

    def __init__(self, x: int, y: int, width: int, height: int) -> None:
        self.x = x
        self.y = y
        self.width = width
        self.height = height
        super().__init__(
            f"Cell ({x}, {y}) is outside the {width}x{height} grid."
        )


class NumericalDegenerateError(EngineError, ArithmeticError):
    """Raised when a computation produces NaN or infinite values."""
