"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, MutableMapping, Sequence

import numpy as np

from ..core.types import Example

TASK_TYPES = frozenset({"regression", "multiclass", "reconstruction"})


@dataclass(frozen=True)
class DataSpec:
    """Structural information about a dataset.

    Attributes
    ----------
    d_in:
        Length of every input vector.
    d_out:
        Length of every target vector.
    task_type:
        One of ``{"regression", "multiclass", "reconstruction"}``.
    num_classes:
        Number of classes when ``task_type`` is ``"multiclass"``; targets are
        then one-hot encoded.
    """

    d_in: int
    d_out: int
    task_type: str
    num_classes: int | None = None


@dataclass(frozen=True)
class DatasetSpec:
    """In-memory dataset registered in the system."""

    name: str
    examples: Sequence[Example]
    data_spec: DataSpec
    provenance: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.examples)


DatasetFactory = Callable[..., DatasetSpec]

_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory, directly or as a decorator."""

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    return _decorator


def get(dataset: str, /, **options: Any) -> DatasetSpec:
    """Return the :class:`DatasetSpec` built by the factory named ``dataset``."""

    if dataset not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise KeyError(f"Unknown dataset {dataset!r}. Available datasets: {available}")
    spec = _REGISTRY[dataset](**options)
    _validate_spec(spec)
    return spec


def available_datasets() -> Iterable[str]:
    return sorted(_REGISTRY)


def _validate_spec(spec: DatasetSpec) -> None:
    if spec.data_spec.task_type not in TASK_TYPES:
        raise ValueError(f"Invalid task type: {spec.data_spec.task_type}")
    if spec.data_spec.task_type == "multiclass" and spec.data_spec.num_classes is None:
        raise ValueError("Multiclass datasets must define num_classes")
    if not spec.examples:
        raise ValueError(f"Dataset {spec.name!r} has no examples")
    for example in spec.examples:
        if example.inputs.shape[0] != spec.data_spec.d_in:
            raise ValueError(f"Dataset {spec.name!r} has an input of the wrong length")
        if example.targets.shape[0] != spec.data_spec.d_out:
            raise ValueError(f"Dataset {spec.name!r} has a target of the wrong length")


class BatchLoader:
    """Re-iterable mini-batch loader reshuffled deterministically per epoch."""

    def __init__(
        self,
        examples: Sequence[Example],
        batch_size: int,
        *,
        seed: int = 0,
        shuffle: bool = True,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.examples = list(examples)
        self.batch_size = int(batch_size)
        self.seed = int(seed)
        self.shuffle = shuffle
        self._epoch = 0

    def __iter__(self) -> Iterator[List[Example]]:
        order = np.arange(len(self.examples))
        if self.shuffle:
            np.random.default_rng(self.seed + self._epoch).shuffle(order)
        self._epoch += 1
        for start in range(0, len(order), self.batch_size):
            yield [self.examples[i] for i in order[start : start + self.batch_size]]

    def __len__(self) -> int:
        return -(-len(self.examples) // self.batch_size)


__all__ = [
    "BatchLoader",
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get",
    "register_dataset",
]
