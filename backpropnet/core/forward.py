"""Forward pass through a layered weight model."""

from __future__ import annotations

from typing import List, Optional

import numpy as np

from . import activations
from .errors import ShapeMismatchError
from .types import AnnModel, Array, ForwardResult, OutputHook, as_vector


def with_bias(values: Array) -> Array:
    """Return ``values`` with a trailing constant ``1`` for the bias row."""

    out = np.empty(values.shape[0] + 1, dtype=np.float64)
    out[:-1] = values
    out[-1] = 1.0
    return out


def run(model: AnnModel, inputs, hook: Optional[OutputHook] = None) -> ForwardResult:
    """Compute the weighted sums and activations of every layer of ``model``.

    ``hook`` receives a copy of the activations of ``hook.layer``; whatever it
    returns is exposed as :attr:`ForwardResult.hook_result`.
    """

    layer_count = model.layer_count()
    if hook is not None and not 0 <= hook.layer < layer_count:
        raise ValueError(f"hook bound to layer {hook.layer} but the model has {layer_count} layers")

    x = as_vector(inputs)
    outputs: List[Array] = []
    sums: List[Array] = []
    hook_result = None
    for i in range(layer_count):
        weights = model.layer(i)
        layer_input = with_bias(x if i == 0 else outputs[i - 1])
        if weights.shape[0] != layer_input.shape[0]:
            raise ShapeMismatchError(
                f"layer {i} expects {weights.shape[0] - 1} inputs plus bias, "
                f"got {layer_input.shape[0] - 1}"
            )
        z = layer_input @ weights
        sums.append(z)
        outputs.append(activations.apply(model.activation_of_layer(i), z))

        if hook is not None and hook.layer == i:
            hook_result = hook.callback(outputs[i].copy())

    return ForwardResult(outputs=outputs, sums=sums, hook_result=hook_result)


__all__ = ["run", "with_bias"]
