"""Dense feed-forward model with bias rows folded into its weight matrices."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, MutableSequence, Optional, Sequence

import numpy as np

from .core.activations import Activation
from .core.errors import ShapeMismatchError
from .core.gradient import AnnGradient, Computed
from .core.types import Array, ModelDescription

GradientPostProcessor = Callable[[AnnGradient], None]


@dataclass(frozen=True)
class LayerSpec:
    """Output width and activation of one layer."""

    size: int
    activation: Activation = Activation.SIGMOID

    def __post_init__(self) -> None:
        if int(self.size) <= 0:
            raise ValueError(f"layer size must be positive, got {self.size}")
        object.__setattr__(self, "size", int(self.size))
        object.__setattr__(self, "activation", Activation.parse(self.activation))


@dataclass(frozen=True)
class ModelConfig:
    """Input width followed by the layers of the network."""

    input_size: int
    layers: Sequence[LayerSpec]

    def __post_init__(self) -> None:
        if int(self.input_size) <= 0:
            raise ValueError(f"input size must be positive, got {self.input_size}")
        if not self.layers:
            raise ValueError("a model needs at least one layer")
        object.__setattr__(self, "layers", tuple(self.layers))

    @property
    def layer_dims(self) -> List[int]:
        return [int(self.input_size)] + [layer.size for layer in self.layers]

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ModelConfig":
        """Build a config from ``{"d_in": 2, "layers": [{"size": 3, "activation": "tanh"}]}``."""

        layers = [
            LayerSpec(int(item["size"]), item.get("activation", "sigmoid"))  # type: ignore[index]
            for item in data.get("layers", [])  # type: ignore[union-attr]
        ]
        return cls(input_size=int(data["d_in"]), layers=layers)  # type: ignore[arg-type]


def clip_gradient(max_norm: float) -> GradientPostProcessor:
    """Return a post-processor rescaling matrices whose norm exceeds ``max_norm``."""

    if max_norm <= 0:
        raise ValueError(f"max_norm must be positive, got {max_norm}")

    def _clip(gradient: AnnGradient) -> None:
        for slot in gradient:
            if isinstance(slot, Computed):
                norm = float(np.linalg.norm(slot.matrix))
                if norm > max_norm:
                    slot.matrix *= max_norm / norm
        if gradient.input_gradient is not None:
            norm = float(np.linalg.norm(gradient.input_gradient))
            if norm > max_norm:
                gradient.input_gradient *= max_norm / norm

    return _clip


@dataclass
class DenseAnnModel:
    """Weights of shape ``(inputs + 1, outputs)`` per layer, bias in the last row."""

    config: ModelConfig
    seed: int = 0
    init_scale: float = 0.1
    gradient_post_processor: Optional[GradientPostProcessor] = None
    weights: MutableSequence[Array] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset(self.seed)

    @classmethod
    def from_weights(
        cls,
        weights: Sequence[Array],
        activations: Sequence["Activation | str"],
        gradient_post_processor: Optional[GradientPostProcessor] = None,
    ) -> "DenseAnnModel":
        """Build a model around explicit weight matrices."""

        if len(weights) != len(activations):
            raise ValueError(f"got {len(weights)} weight matrices but {len(activations)} activations")
        matrices = [np.array(w, dtype=np.float64) for w in weights]
        for i, W in enumerate(matrices):
            if W.ndim != 2 or W.shape[0] < 2:
                raise ShapeMismatchError(f"layer {i} must be 2-D with a bias row, got {W.shape}")
            if i > 0 and matrices[i - 1].shape[1] + 1 != W.shape[0]:
                raise ShapeMismatchError(
                    f"layer {i} expects {W.shape[0] - 1} inputs but layer {i - 1} "
                    f"produces {matrices[i - 1].shape[1]}"
                )
        config = ModelConfig(
            input_size=matrices[0].shape[0] - 1,
            layers=[LayerSpec(W.shape[1], act) for W, act in zip(matrices, activations)],
        )
        model = cls(config=config, gradient_post_processor=gradient_post_processor)
        model.weights = matrices
        return model

    def reset(self, seed: int) -> None:
        rng = np.random.default_rng(seed)
        weights: list[Array] = []
        dims = self.config.layer_dims
        for in_dim, out_dim in zip(dims[:-1], dims[1:]):
            W = np.zeros((in_dim + 1, out_dim), dtype=np.float64)
            W[:-1, :] = rng.standard_normal((in_dim, out_dim)) * self.init_scale
            weights.append(W)
        self.weights = weights

    def describe(self) -> ModelDescription:
        return ModelDescription(
            layer_dims=self.config.layer_dims,
            activations=[layer.activation.value for layer in self.config.layers],
        )

    # ------------------------------------------------------------------
    # Model contract used by the training core

    def layer_count(self) -> int:
        return len(self.weights)

    def layer(self, index: int) -> Array:
        return self.weights[index]

    def activation_of_layer(self, index: int) -> Activation:
        return self.config.layers[index].activation

    def update(self, gradient: AnnGradient, learning_rate: float) -> None:
        if len(gradient) != len(self.weights):
            raise ShapeMismatchError(
                f"gradient has {len(gradient)} layers, model has {len(self.weights)}"
            )
        for idx, slot in enumerate(gradient):
            if not isinstance(slot, Computed):
                continue
            if slot.matrix.shape != self.weights[idx].shape:
                raise ShapeMismatchError(
                    f"layer {idx}: gradient {slot.matrix.shape} vs weights {self.weights[idx].shape}"
                )
        for idx, slot in enumerate(gradient):
            if isinstance(slot, Computed):
                self.weights[idx] += learning_rate * slot.matrix

    def post_process_gradient(self, gradient: AnnGradient) -> None:
        if self.gradient_post_processor is not None:
            self.gradient_post_processor(gradient)

    # ------------------------------------------------------------------
    # Persistence

    def state_dict(self) -> Mapping[str, Array]:
        return {f"W{idx}": W.copy() for idx, W in enumerate(self.weights)}

    def load_state_dict(self, state: Mapping[str, Array]) -> None:
        for idx in range(len(self.weights)):
            key = f"W{idx}"
            if key not in state:
                raise KeyError(f"Missing weight {key} in state dict")
            if state[key].shape != self.weights[idx].shape:
                raise ShapeMismatchError(
                    f"{key} has shape {state[key].shape}, expected {self.weights[idx].shape}"
                )
            self.weights[idx] = np.array(state[key], dtype=np.float64)

    def parameter_count(self) -> int:
        return int(sum(int(w.size) for w in self.weights))

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        activations = np.array([layer.activation.value for layer in self.config.layers])
        with path.open("wb") as handle:
            np.savez_compressed(handle, activations=activations, **self.state_dict())
        return path

    @classmethod
    def load(cls, path: str | Path) -> "DenseAnnModel":
        with np.load(Path(path), allow_pickle=False) as data:
            activations = [str(a) for a in data["activations"]]
            weights = [data[f"W{idx}"] for idx in range(len(activations))]
        return cls.from_weights(weights, activations)


__all__ = ["DenseAnnModel", "LayerSpec", "ModelConfig", "clip_gradient"]
