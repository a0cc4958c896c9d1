"""Datasets for backpropnet."""

from . import builtin  # noqa: F401  registers the built-in datasets
from .registry import BatchLoader, DataSpec, DatasetSpec, available_datasets, get, register_dataset

__all__ = [
    "BatchLoader",
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get",
    "register_dataset",
]
