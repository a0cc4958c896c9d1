"""Core numerical primitives for backpropnet."""

from . import activations, errors, forward, gradient, strategies, types

__all__ = ["activations", "errors", "forward", "gradient", "strategies", "types"]
