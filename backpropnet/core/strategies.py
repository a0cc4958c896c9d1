"""Backpropagation strategies for backpropnet.

All strategies seed the output error with ``target - prediction`` and walk
the layers from the output back to the input. Weight matrices keep the bias
in their last row, so an error propagated through ``W @ delta`` always has a
trailing bias component that is dropped before it reaches the layer below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import numpy as np

from . import activations
from .activations import Activation, ScalarActivation
from .errors import PreconditionError, ShapeMismatchError
from .forward import with_bias
from .gradient import AnnGradient
from .types import AnnModel, Array, Example, ForwardResult, as_vector

logger = logging.getLogger(__name__)


def _output_error(example: Example, outputs: Sequence[Array]) -> Array:
    prediction = outputs[-1]
    if example.targets.shape != prediction.shape:
        raise ShapeMismatchError(
            f"target has {example.targets.shape[0]} entries, output layer has {prediction.shape[0]}"
        )
    return example.targets - prediction


def _layer_input(index: int, example: Example, outputs: Sequence[Array]) -> Array:
    return example.inputs if index == 0 else outputs[index - 1]


def _elementwise(model: AnnModel, index: int) -> ScalarActivation:
    activation = Activation.parse(model.activation_of_layer(index))
    if activation.is_multi_input:
        raise PreconditionError(
            f"layer {index} uses {activation.value}, which has no elementwise derivative"
        )
    return activations.activation_function(activation)


def _least_squares_step(
    model: AnnModel,
    index: int,
    example: Example,
    outputs: Sequence[Array],
    sums: Sequence[Array],
    delta: Array,
) -> tuple[Array, Array]:
    """Return the gradient of layer ``index`` and the error for the layer below."""

    weights = model.layer(index)
    edge = with_bias(_layer_input(index, example, outputs))
    if weights.shape[0] != edge.shape[0]:
        raise ShapeMismatchError(
            f"layer {index} has {weights.shape[0]} rows but receives {edge.shape[0]} inputs with bias"
        )
    derivative = _elementwise(model, index).derivative(sums[index])
    gradient = np.outer(edge, delta * derivative)
    return gradient, (weights @ delta)[:-1]


def backpropagate_least_squares(
    model: AnnModel,
    example: Example,
    outputs: Sequence[Array],
    sums: Sequence[Array],
) -> AnnGradient:
    """Gradient of the squared error for every layer of ``model``."""

    delta = _output_error(example, outputs)
    matrices: List[Optional[Array]] = [None] * model.layer_count()
    for i in reversed(range(model.layer_count())):
        matrices[i], delta = _least_squares_step(model, i, example, outputs, sums, delta)
    return AnnGradient.of(matrices)


def backpropagate_autoencoder_least_squares(
    model: AnnModel,
    example: Example,
    outputs: Sequence[Array],
    sums: Sequence[Array],
) -> AnnGradient:
    """Squared-error gradient for a weight-tied autoencoder.

    Only the two layers closest to the output are computed; earlier layers
    are skipped. The two gradients are then tied so that
    ``last[i, j] == second_last[j, i]`` over the non-bias region.
    """

    layer_count = model.layer_count()
    if layer_count < 2:
        raise PreconditionError(f"tied weights need at least two layers, model has {layer_count}")
    last_shape = model.layer(layer_count - 1).shape
    second_shape = model.layer(layer_count - 2).shape
    if last_shape[0] - 1 != second_shape[1] or last_shape[1] != second_shape[0] - 1:
        raise PreconditionError(
            f"layers {layer_count - 2} {second_shape} and {layer_count - 1} {last_shape} "
            "are not transposes of one another"
        )

    delta = _output_error(example, outputs)
    matrices: List[Optional[Array]] = [None] * layer_count
    for i in (layer_count - 1, layer_count - 2):
        matrices[i], delta = _least_squares_step(model, i, example, outputs, sums, delta)

    last = matrices[-1]
    second_last = matrices[-2]
    tied = last[:-1, :] + second_last[:-1, :].T
    last[:-1, :] = tied
    second_last[:-1, :] = tied.T
    return AnnGradient.of(matrices)


def backpropagate_softmax_log_likelihood(
    model: AnnModel,
    example: Example,
    outputs: Sequence[Array],
    sums: Sequence[Array],
    l2_lambdas: Optional[Sequence[float]] = None,
    reuse: Optional[AnnGradient] = None,
) -> AnnGradient:
    """Log-likelihood gradient of a softmax network with optional L2 penalty.

    ``l2_lambdas`` holds one coefficient per layer and, optionally, one more
    for the input gradient. When ``reuse`` is given its matrices are
    overwritten instead of allocating new ones. The returned gradient carries
    the gradient with respect to the (bias augmented) input and has been
    passed through ``model.post_process_gradient``.
    """

    layer_count = model.layer_count()
    lambdas = None
    if l2_lambdas is not None:
        lambdas = as_vector(l2_lambdas)
        if lambdas.shape[0] < layer_count:
            raise ValueError(
                f"expected at least {layer_count} L2 coefficients, got {lambdas.shape[0]}"
            )
    if Activation.parse(model.activation_of_layer(layer_count - 1)) is not Activation.SOFTMAX:
        raise PreconditionError("the output layer must be a softmax layer")
    if reuse is not None and len(reuse) != layer_count:
        raise ShapeMismatchError(f"reused gradient has {len(reuse)} layers, model has {layer_count}")

    l_over_a = _output_error(example, outputs)
    matrices: List[Optional[Array]] = [None] * layer_count
    for k in reversed(range(layer_count)):
        weights = model.layer(k)
        h = _layer_input(k, example, outputs)
        if weights.shape[0] != h.shape[0] + 1:
            raise PreconditionError(f"layer {k} has no bias row")

        if reuse is None:
            gradient = np.empty_like(weights, dtype=np.float64)
        else:
            if not reuse.is_computed(k) or reuse.matrix(k).shape != weights.shape:
                raise ShapeMismatchError(f"reused gradient does not match layer {k}")
            gradient = reuse.matrix(k)

        l2_lambda = 0.0 if lambdas is None else float(lambdas[k])
        gradient[:-1, :] = np.outer(h, l_over_a) - l2_lambda * weights[:-1, :]
        gradient[-1, :] = l_over_a - l2_lambda * weights[-1, :]
        matrices[k] = gradient

        if k > 0:
            l_over_h = (weights @ l_over_a)[:-1]
            l_over_a = l_over_h * _elementwise(model, k - 1).derivative(sums[k - 1])

    l_over_x = model.layer(0) @ l_over_a
    if lambdas is not None and lambdas.shape[0] > layer_count:
        l_over_x[:-1] -= float(lambdas[layer_count]) * example.inputs

    result = AnnGradient.of(matrices, l_over_x)
    model.post_process_gradient(result)
    return result


class BackpropStrategy(Protocol):
    """Protocol implemented by backpropagation strategies."""

    name: str

    def backward(self, model: AnnModel, example: Example, forward: ForwardResult) -> AnnGradient:
        """Return the gradient of ``example`` given its forward pass."""


@dataclass
class LeastSquares:
    """Plain squared-error backpropagation through every layer."""

    name = "least_squares"

    def backward(self, model: AnnModel, example: Example, forward: ForwardResult) -> AnnGradient:
        return backpropagate_least_squares(model, example, forward.outputs, forward.sums)


@dataclass
class AutoEncoderLeastSquares:
    """Squared error with the two output-side layers tied by transposition."""

    name = "autoencoder_least_squares"

    def backward(self, model: AnnModel, example: Example, forward: ForwardResult) -> AnnGradient:
        return backpropagate_autoencoder_least_squares(
            model, example, forward.outputs, forward.sums
        )


@dataclass
class SoftmaxLogLikelihood:
    """Softmax log-likelihood with optional per-layer L2 regularisation.

    With ``reuse_buffers`` the strategy writes into one gradient buffer kept
    across calls and returns a copy, so callers may keep what they receive.
    """

    l2_lambdas: Optional[Sequence[float]] = None
    reuse_buffers: bool = False
    _buffer: Optional[AnnGradient] = field(default=None, init=False, repr=False)

    name = "softmax_log_likelihood"

    def backward(self, model: AnnModel, example: Example, forward: ForwardResult) -> AnnGradient:
        if not self.reuse_buffers:
            return backpropagate_softmax_log_likelihood(
                model, example, forward.outputs, forward.sums, self.l2_lambdas
            )
        buffer = self._buffer if self._fits(self._buffer, model) else None
        gradient = backpropagate_softmax_log_likelihood(
            model, example, forward.outputs, forward.sums, self.l2_lambdas, reuse=buffer
        )
        self._buffer = gradient
        return gradient.copy()

    @staticmethod
    def _fits(buffer: Optional[AnnGradient], model: AnnModel) -> bool:
        if buffer is None or len(buffer) != model.layer_count():
            return False
        return all(
            buffer.is_computed(i) and buffer.matrix(i).shape == model.layer(i).shape
            for i in range(model.layer_count())
        )


STRATEGIES: Dict[str, Callable[..., BackpropStrategy]] = {
    LeastSquares.name: LeastSquares,
    AutoEncoderLeastSquares.name: AutoEncoderLeastSquares,
    SoftmaxLogLikelihood.name: SoftmaxLogLikelihood,
}


def build_strategy(name: str, **options) -> BackpropStrategy:
    """Instantiate the strategy registered under ``name``."""

    try:
        factory = STRATEGIES[name]
    except KeyError:
        available = ", ".join(sorted(STRATEGIES))
        raise ValueError(f"Unknown strategy {name!r}. Available strategies: {available}") from None
    if name != SoftmaxLogLikelihood.name:
        options = {k: v for k, v in options.items() if v is not None}
        if options:
            raise ValueError(f"strategy {name!r} takes no options, got {sorted(options)}")
    strategy = factory(**options)
    logger.debug("built strategy %s", strategy)
    return strategy


__all__ = [
    "AutoEncoderLeastSquares",
    "BackpropStrategy",
    "LeastSquares",
    "STRATEGIES",
    "SoftmaxLogLikelihood",
    "backpropagate_autoencoder_least_squares",
    "backpropagate_least_squares",
    "backpropagate_softmax_log_likelihood",
    "build_strategy",
]
