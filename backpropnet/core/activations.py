"""Activation catalogue for backpropnet.

Every layer of a model names one :class:`Activation`. Single-input
activations are applied elementwise to the layer's weighted sums, while
multi-input activations (softmax) compute each output from the whole
pre-activation vector of the layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

import numpy as np

from .errors import PreconditionError
from .types import Array


class Activation(str, Enum):
    """Activation identifiers understood by the forward runner."""

    LINEAR = "linear"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    RELU = "relu"
    SOFTMAX = "softmax"

    @property
    def is_multi_input(self) -> bool:
        return self in _MULTI_INPUT

    @classmethod
    def parse(cls, value: "str | Activation") -> "Activation":
        if isinstance(value, Activation):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        available = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown activation {value!r}. Available: {available}")


_MULTI_INPUT = frozenset({Activation.SOFTMAX})


@dataclass(frozen=True)
class ScalarActivation:
    """Elementwise activation paired with its derivative."""

    name: str
    fn: Callable[[Array], Array]
    deriv: Callable[[Array], Array]

    def compute(self, x):
        return self.fn(x)

    def derivative(self, x):
        return self.deriv(x)


@dataclass(frozen=True)
class MultiInputActivation:
    """Activation whose outputs depend on the whole layer.

    ``compute`` receives ``[index, a_0, ..., a_{n-1}]``: the output index to
    evaluate followed by every weighted sum of the layer.
    """

    name: str
    fn: Callable[[Array], float]

    def compute(self, indexed_sums: Array) -> float:
        return self.fn(indexed_sums)


def _sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def _sigmoid_deriv(x):
    s = _sigmoid(x)
    return s * (1.0 - s)


def _tanh_deriv(x):
    return 1.0 - np.tanh(x) ** 2


def _relu(x):
    return np.maximum(x, 0.0)


def _relu_deriv(x):
    return (np.asarray(x) > 0).astype(np.float64)


def _linear(x):
    return np.asarray(x, dtype=np.float64)


def _linear_deriv(x):
    return np.ones_like(np.asarray(x, dtype=np.float64))


def _softmax_at(indexed_sums: Array) -> float:
    index = int(indexed_sums[0])
    z = np.asarray(indexed_sums[1:], dtype=np.float64)
    e = np.exp(z - z.max())
    return float(e[index] / e.sum())


_SCALAR: Dict[Activation, ScalarActivation] = {
    Activation.LINEAR: ScalarActivation("linear", _linear, _linear_deriv),
    Activation.SIGMOID: ScalarActivation("sigmoid", _sigmoid, _sigmoid_deriv),
    Activation.TANH: ScalarActivation("tanh", np.tanh, _tanh_deriv),
    Activation.RELU: ScalarActivation("relu", _relu, _relu_deriv),
}

_MULTI: Dict[Activation, MultiInputActivation] = {
    Activation.SOFTMAX: MultiInputActivation("softmax", _softmax_at),
}


def activation_function(activation: "Activation | str") -> ScalarActivation:
    """Return the elementwise function and derivative for ``activation``."""

    activation = Activation.parse(activation)
    try:
        return _SCALAR[activation]
    except KeyError:
        raise PreconditionError(
            f"{activation.value} is a multi-input activation and has no elementwise form"
        ) from None


def multi_input_activation_function(activation: "Activation | str") -> MultiInputActivation:
    """Return the multi-input function registered for ``activation``."""

    activation = Activation.parse(activation)
    try:
        return _MULTI[activation]
    except KeyError:
        raise PreconditionError(
            f"{activation.value} is an elementwise activation, not a multi-input one"
        ) from None


def apply(activation: "Activation | str", sums: Array) -> Array:
    """Apply ``activation`` to the weighted sums of one layer."""

    activation = Activation.parse(activation)
    sums = np.asarray(sums, dtype=np.float64)
    if not activation.is_multi_input:
        return np.asarray(activation_function(activation).compute(sums), dtype=np.float64)

    fn = multi_input_activation_function(activation)
    indexed = np.empty(sums.shape[0] + 1, dtype=np.float64)
    indexed[1:] = sums
    out = np.empty_like(sums)
    for j in range(sums.shape[0]):
        indexed[0] = j
        out[j] = fn.compute(indexed)
    return out


__all__ = [
    "Activation",
    "MultiInputActivation",
    "ScalarActivation",
    "activation_function",
    "apply",
    "multi_input_activation_function",
]
