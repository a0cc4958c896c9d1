"""Small in-memory datasets used by the presets and tests."""

from __future__ import annotations

import numpy as np

from ..core.types import Example
from .registry import DataSpec, DatasetSpec, register_dataset


@register_dataset("xor")
def make_xor(repeat: int = 1, **_: object) -> DatasetSpec:
    """The four XOR points, optionally repeated."""

    points = [((0.0, 0.0), 0.0), ((0.0, 1.0), 1.0), ((1.0, 0.0), 1.0), ((1.0, 1.0), 0.0)]
    examples = [Example(x, [y]) for _ in range(int(repeat)) for x, y in points]
    return DatasetSpec(
        name="xor",
        examples=examples,
        data_spec=DataSpec(d_in=2, d_out=1, task_type="regression"),
        provenance={"type": "xor", "repeat": int(repeat)},
    )


@register_dataset("blobs")
def make_blobs(
    num_classes: int = 3,
    d_in: int = 2,
    n_per_class: int = 20,
    spread: float = 0.3,
    seed: int = 0,
    **_: object,
) -> DatasetSpec:
    """Gaussian clusters around random centres with one-hot targets."""

    rng = np.random.default_rng(seed)
    centres = rng.uniform(-2.0, 2.0, size=(num_classes, d_in))
    eye = np.eye(num_classes)
    examples = []
    for label in range(num_classes):
        points = centres[label] + spread * rng.standard_normal((n_per_class, d_in))
        examples.extend(Example(p, eye[label]) for p in points)
    order = rng.permutation(len(examples))
    return DatasetSpec(
        name="blobs",
        examples=[examples[i] for i in order],
        data_spec=DataSpec(d_in=d_in, d_out=num_classes, task_type="multiclass", num_classes=num_classes),
        provenance={
            "type": "blobs",
            "num_classes": num_classes,
            "d_in": d_in,
            "n_per_class": n_per_class,
            "spread": spread,
            "seed": seed,
        },
    )


@register_dataset("one_hot")
def make_one_hot(size: int = 4, **_: object) -> DatasetSpec:
    """Identity reconstruction of the ``size`` one-hot vectors."""

    eye = np.eye(int(size))
    return DatasetSpec(
        name="one_hot",
        examples=[Example(row, row) for row in eye],
        data_spec=DataSpec(d_in=int(size), d_out=int(size), task_type="reconstruction"),
        provenance={"type": "one_hot", "size": int(size)},
    )
