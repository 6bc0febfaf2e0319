"""
Error taxonomy for FFT planning.

every error can carry the axis and extent that caused it so the enclosing
compiler can report an "unsupported size for FFT-based operator" diagnostic.
"""

from typing import Any, Optional


class FFTPlanError(Exception):
    """Base class for all planning failures."""

    def __init__(self, message: str, axis: Optional[Any] = None, size: Optional[int] = None):
        self.axis = axis
        self.size = size
        self.reason = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        axis_name = getattr(self.axis, 'name', self.axis)
        if axis_name is not None and self.size is not None:
            return f"unsupported size {self.size} on axis {axis_name}: {message}"
        if self.size is not None:
            return f"unsupported size {self.size}: {message}"
        if axis_name is not None:
            return f"axis {axis_name}: {message}"
        return message


class ConfigurationError(FFTPlanError, ValueError):
    """Rejected request: bad size, bad dimensionality or bad device profile."""


class ResourceError(FFTPlanError):
    """The decomposition needs more threads, registers or local memory than the device offers."""


class InternalInvariantError(FFTPlanError, RuntimeError):
    """A planner defect, never a caller input problem."""
