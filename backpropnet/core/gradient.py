"""Per-layer gradient container."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np

from .errors import ShapeMismatchError, SkippedGradientError
from .types import AnnModel, Array


@dataclass
class Computed:
    """Gradient slot holding a matrix shaped like its layer's weights."""

    matrix: Array


class Skipped:
    """Gradient slot for a layer whose gradient was intentionally not computed."""

    _instance: Optional["Skipped"] = None

    def __new__(cls) -> "Skipped":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIPPED"


SKIPPED = Skipped()

Slot = Union[Computed, Skipped]


class AnnGradient:
    """Ordered per-layer gradients plus an optional gradient w.r.t. the input."""

    def __init__(self, slots: Sequence[Slot], input_gradient: Optional[Array] = None) -> None:
        self.slots: List[Slot] = list(slots)
        self.input_gradient = input_gradient

    @classmethod
    def of(
        cls, matrices: Sequence[Optional[Array]], input_gradient: Optional[Array] = None
    ) -> "AnnGradient":
        """Wrap raw matrices; ``None`` entries become skipped slots."""

        slots: List[Slot] = [
            SKIPPED if m is None else Computed(np.asarray(m, dtype=np.float64)) for m in matrices
        ]
        return cls(slots, input_gradient)

    @classmethod
    def zeros_like(cls, model: AnnModel) -> "AnnGradient":
        """Allocate a zero gradient matching every layer of ``model``."""

        slots: List[Slot] = [
            Computed(np.zeros_like(model.layer(i), dtype=np.float64))
            for i in range(model.layer_count())
        ]
        return cls(slots)

    def __len__(self) -> int:
        return len(self.slots)

    def __iter__(self) -> Iterator[Slot]:
        return iter(self.slots)

    def __repr__(self) -> str:
        shapes = [s.matrix.shape if isinstance(s, Computed) else s for s in self.slots]
        return f"AnnGradient({shapes}, input_gradient={self.input_gradient is not None})"

    def is_computed(self, index: int) -> bool:
        return isinstance(self.slots[index], Computed)

    def matrix(self, index: int) -> Array:
        slot = self.slots[index]
        if isinstance(slot, Computed):
            return slot.matrix
        raise SkippedGradientError(f"gradient of layer {index} was not computed")

    def matrices(self) -> List[Optional[Array]]:
        return [s.matrix if isinstance(s, Computed) else None for s in self.slots]

    def merge(self, other: "AnnGradient") -> "AnnGradient":
        """Add ``other`` into this gradient in place and return ``self``."""

        if len(other) != len(self):
            raise ShapeMismatchError(
                f"cannot merge gradients with {len(other)} and {len(self)} layers"
            )
        for index, (mine, theirs) in enumerate(zip(self.slots, other.slots)):
            if isinstance(mine, Skipped) and isinstance(theirs, Skipped):
                continue
            if isinstance(mine, Skipped) or isinstance(theirs, Skipped):
                raise ShapeMismatchError(f"layer {index} is skipped in only one gradient")
            if mine.matrix.shape != theirs.matrix.shape:
                raise ShapeMismatchError(
                    f"layer {index}: shape {theirs.matrix.shape} does not match {mine.matrix.shape}"
                )
        if (self.input_gradient is None) != (other.input_gradient is None):
            raise ShapeMismatchError("input gradient present in only one gradient")
        if self.input_gradient is not None and self.input_gradient.shape != other.input_gradient.shape:
            raise ShapeMismatchError("input gradient shapes differ")

        for mine, theirs in zip(self.slots, other.slots):
            if isinstance(mine, Computed):
                mine.matrix += theirs.matrix
        if self.input_gradient is not None:
            self.input_gradient += other.input_gradient
        return self

    update_by_plus = merge

    def scale(self, factor: float) -> "AnnGradient":
        for slot in self.slots:
            if isinstance(slot, Computed):
                slot.matrix *= factor
        if self.input_gradient is not None:
            self.input_gradient *= factor
        return self

    def copy(self) -> "AnnGradient":
        slots: List[Slot] = [
            Computed(s.matrix.copy()) if isinstance(s, Computed) else SKIPPED for s in self.slots
        ]
        input_gradient = None if self.input_gradient is None else self.input_gradient.copy()
        return AnnGradient(slots, input_gradient)

    def norm(self) -> float:
        """Frobenius norm over every computed slot."""

        total = 0.0
        for slot in self.slots:
            if isinstance(slot, Computed):
                total += float(np.sum(np.square(slot.matrix)))
        return float(np.sqrt(total))


__all__ = ["AnnGradient", "Computed", "SKIPPED", "Skipped", "Slot"]
