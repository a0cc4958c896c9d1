"""Mini-batch training on top of the forward runner and backprop strategies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..core import forward
from ..core.gradient import AnnGradient
from ..core.strategies import BackpropStrategy, build_strategy
from ..core.types import AnnModel, Example
from .losses import loss_for_strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainerConfig:
    """Learning rate and backpropagation strategy used by :class:`Trainer`."""

    learning_rate: float = 0.1
    strategy: str = "least_squares"
    l2_lambdas: Optional[Sequence[float]] = None

    def __post_init__(self) -> None:
        if not np.isfinite(self.learning_rate) or self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be a positive number, got {self.learning_rate}")
        if self.l2_lambdas is not None:
            object.__setattr__(self, "l2_lambdas", tuple(float(v) for v in self.l2_lambdas))

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "TrainerConfig":
        l2 = data.get("l2_lambdas")
        return cls(
            learning_rate=float(data.get("lr", data.get("learning_rate", 0.1))),  # type: ignore[arg-type]
            strategy=str(data.get("strategy", "least_squares")),
            l2_lambdas=None if l2 is None else list(l2),  # type: ignore[arg-type]
        )

    def build_strategy(self) -> BackpropStrategy:
        options = {}
        if self.l2_lambdas is not None:
            options["l2_lambdas"] = self.l2_lambdas
        return build_strategy(self.strategy, **options)


@dataclass
class BatchReport:
    """Aggregate gradient of one mini-batch plus per-example losses."""

    gradient: AnnGradient
    losses: List[float]
    correct: int = 0

    @property
    def mean_loss(self) -> float:
        return float(np.mean(self.losses)) if self.losses else 0.0


@dataclass
class FitResult:
    steps: int
    history: List[Mapping[str, float]] = field(default_factory=list)


def _is_hit(prediction: np.ndarray, target: np.ndarray) -> bool:
    if target.shape[0] > 1:
        return int(np.argmax(prediction)) == int(np.argmax(target))
    return bool(np.round(prediction[0]) == np.round(target[0]))


class Trainer:
    """Fold per-example gradients over a mini-batch and apply them once."""

    def __init__(
        self,
        config: TrainerConfig | None = None,
        callbacks: Sequence[object] | None = None,
    ) -> None:
        self.config = config or TrainerConfig()
        self.strategy = self.config.build_strategy()
        self.loss = loss_for_strategy(self.config.strategy)
        self.callbacks = list(callbacks or [])

    def compute_batch_gradient(self, model: AnnModel, examples: Sequence[Example]) -> AnnGradient:
        """Sum the gradients of ``examples`` without touching the model."""

        return self._fold(model, examples).gradient

    def train_with_mini_batch(self, model: AnnModel, examples: Sequence[Example]) -> AnnGradient:
        """Apply the summed gradient of ``examples`` to ``model`` and return it."""

        return self._train_batch(model, examples).gradient

    def evaluate(self, model: AnnModel, examples: Sequence[Example]) -> Mapping[str, float]:
        if not examples:
            raise ValueError("cannot evaluate an empty example list")
        losses = []
        correct = 0
        for example in examples:
            prediction = forward.run(model, example.inputs).prediction
            losses.append(self.loss(prediction, example.targets))
            correct += _is_hit(prediction, example.targets)
        return {"loss": float(np.mean(losses)), "accuracy": correct / len(examples)}

    def fit(
        self,
        model: AnnModel,
        batches: Iterable[Sequence[Example]],
        epochs: int = 1,
    ) -> FitResult:
        """Train for ``epochs`` passes over the re-iterable ``batches``."""

        if epochs < 1:
            raise ValueError(f"epochs must be at least 1, got {epochs}")
        step = 0
        history: List[Mapping[str, float]] = []
        for epoch in range(1, epochs + 1):
            losses: List[float] = []
            correct = 0
            for batch in batches:
                report = self._train_batch(model, batch)
                step += 1
                losses.extend(report.losses)
                correct += report.correct
                self._emit_step(
                    step,
                    {
                        "loss": report.mean_loss,
                        "grad_norm": report.gradient.norm(),
                        "batch_size": float(len(batch)),
                    },
                )
            if not losses:
                raise ValueError("batches yielded no examples")
            metrics = {"loss": float(np.mean(losses)), "accuracy": correct / len(losses)}
            history.append(metrics)
            logger.info("epoch %d: loss=%.6f accuracy=%.4f", epoch, metrics["loss"], metrics["accuracy"])
            self._emit_epoch(epoch, metrics)
        return FitResult(steps=step, history=history)

    # ------------------------------------------------------------------
    # Internal helpers

    def _train_batch(self, model: AnnModel, examples: Sequence[Example]) -> BatchReport:
        report = self._fold(model, examples)
        model.update(report.gradient, self.config.learning_rate)
        return report

    def _fold(self, model: AnnModel, examples: Sequence[Example]) -> BatchReport:
        if not examples:
            raise ValueError("a mini-batch needs at least one example")
        aggregate: AnnGradient | None = None
        losses: List[float] = []
        correct = 0
        for example in examples:
            result = forward.run(model, example.inputs)
            gradient = self.strategy.backward(model, example, result)
            losses.append(self.loss(result.prediction, example.targets))
            correct += _is_hit(result.prediction, example.targets)
            if aggregate is None:
                aggregate = gradient
            else:
                aggregate.merge(gradient)
        logger.debug("folded %d examples, mean loss %.6f", len(examples), float(np.mean(losses)))
        return BatchReport(gradient=aggregate, losses=losses, correct=correct)

    def _emit_step(self, step: int, metrics: Mapping[str, float]) -> None:
        for callback in self.callbacks:
            if hasattr(callback, "on_step"):
                callback.on_step(step, metrics)  # type: ignore[attr-defined]

    def _emit_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(callback):
                callback(epoch, metrics)


__all__ = ["BatchReport", "FitResult", "Trainer", "TrainerConfig"]
