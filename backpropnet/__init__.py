"""backpropnet public API."""

from .core import activations, strategies, types  # noqa: F401
from .core.activations import Activation
from .core.errors import AnnError, PreconditionError, ShapeMismatchError, SkippedGradientError
from .core.forward import run
from .core.gradient import SKIPPED, AnnGradient, Computed
from .core.strategies import (
    backpropagate_autoencoder_least_squares,
    backpropagate_least_squares,
    backpropagate_softmax_log_likelihood,
)
from .core.types import Example, ForwardResult, OutputHook
from .models import DenseAnnModel, LayerSpec, ModelConfig
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import Trainer, TrainerConfig

__all__ = [
    "Activation",
    "AnnError",
    "AnnGradient",
    "Computed",
    "DenseAnnModel",
    "Example",
    "ForwardResult",
    "LayerSpec",
    "ModelConfig",
    "OutputHook",
    "PreconditionError",
    "SKIPPED",
    "ShapeMismatchError",
    "SkippedGradientError",
    "Trainer",
    "TrainerConfig",
    "activations",
    "backpropagate_autoencoder_least_squares",
    "backpropagate_least_squares",
    "backpropagate_softmax_log_likelihood",
    "load_preset",
    "presets",
    "run",
    "run_pipeline",
    "strategies",
    "types",
]
