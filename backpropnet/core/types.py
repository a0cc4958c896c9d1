"""Core typing contracts for backpropnet."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Protocol

import numpy as np

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .activations import Activation
    from .gradient import AnnGradient

Array = np.ndarray


def as_vector(values) -> Array:
    """Return ``values`` as a one dimensional ``float64`` array."""

    return np.asarray(values, dtype=np.float64).reshape(-1)


@dataclass(frozen=True)
class Example:
    """A single training example: an input vector and its target vector."""

    inputs: Array
    targets: Array

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", as_vector(self.inputs))
        object.__setattr__(self, "targets", as_vector(self.targets))


@dataclass(frozen=True)
class OutputHook:
    """Callback bound to the activations of one layer during a forward pass."""

    layer: int
    callback: Callable[[Array], Any]


@dataclass
class ForwardResult:
    """Per-layer activations produced by :func:`backpropnet.core.forward.run`."""

    outputs: List[Array]
    sums: List[Array]
    hook_result: Any = None

    @property
    def prediction(self) -> Array:
        return self.outputs[-1]


@dataclass(frozen=True)
class ModelDescription:
    """Description of the feed-forward network architecture."""

    layer_dims: List[int]
    activations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`backpropnet.training.pipelines.run_pipeline`."""

    steps: int
    metrics_path: str
    manifest_path: str
    summary_path: str = ""
    checkpoint_path: str = ""


class AnnModel(Protocol):
    """Parameter store queried and mutated by the training core."""

    def layer_count(self) -> int:
        """Return the number of weight layers."""

    def layer(self, index: int) -> Array:
        """Return the weight matrix of ``index`` (last row is the bias row)."""

    def activation_of_layer(self, index: int) -> "Activation":
        """Return the activation identifier of ``index``."""

    def update(self, gradient: "AnnGradient", learning_rate: float) -> None:
        """Apply ``gradient`` scaled by ``learning_rate`` to the weights."""

    def post_process_gradient(self, gradient: "AnnGradient") -> None:
        """Customisation point invoked on freshly assembled gradients."""


__all__ = [
    "Array",
    "AnnModel",
    "Example",
    "ForwardResult",
    "ModelDescription",
    "OutputHook",
    "RunResult",
    "as_vector",
]
