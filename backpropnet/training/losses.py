"""Scalar loss values reported alongside training metrics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from ..core.types import Array

LossFn = Callable[[Array, Array], float]

_EPS = 1e-12


@dataclass(frozen=True)
class Loss:
    """Named scalar loss of one prediction against its target."""

    name: str
    fn: LossFn

    def __call__(self, prediction: Array, target: Array) -> float:
        return self.fn(prediction, target)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn) -> None:
        self._registry[name] = Loss(name, fn)

    def get(self, name: str) -> Loss:
        try:
            return self._registry[name]
        except KeyError:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}") from None

    def names(self) -> Iterable[str]:
        return sorted(self._registry)


REGISTRY = LossRegistry()


def _least_squares(prediction: Array, target: Array) -> float:
    diff = np.asarray(target, dtype=np.float64) - prediction
    return float(0.5 * np.sum(np.square(diff)))


def _log_likelihood(prediction: Array, target: Array) -> float:
    return float(-np.sum(np.asarray(target, dtype=np.float64) * np.log(prediction + _EPS)))


REGISTRY.register("least_squares", _least_squares)
REGISTRY.register("log_likelihood", _log_likelihood)

_STRATEGY_LOSS = {
    "least_squares": "least_squares",
    "autoencoder_least_squares": "least_squares",
    "softmax_log_likelihood": "log_likelihood",
}


def loss_for_strategy(strategy: str) -> Loss:
    """Return the loss a backpropagation strategy minimises."""

    try:
        return REGISTRY.get(_STRATEGY_LOSS[strategy])
    except KeyError:
        raise KeyError(f"No loss registered for strategy {strategy!r}") from None


__all__ = ["Loss", "LossRegistry", "REGISTRY", "loss_for_strategy"]
