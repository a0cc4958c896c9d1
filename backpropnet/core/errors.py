"""Exception hierarchy raised by the training core."""

from __future__ import annotations


class AnnError(Exception):
    """Base class for contract violations detected by backpropnet."""


class ShapeMismatchError(AnnError, ValueError):
    """A vector or matrix does not have the shape the operation requires."""


class PreconditionError(AnnError, ValueError):
    """The model or arguments violate a structural precondition."""


class SkippedGradientError(AnnError, LookupError):
    """A skipped gradient slot was accessed as if it had been computed."""


__all__ = [
    "AnnError",
    "ShapeMismatchError",
    "PreconditionError",
    "SkippedGradientError",
]
