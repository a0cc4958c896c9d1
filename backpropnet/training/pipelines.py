"""Pipeline assembly: config mapping -> dataset, model, trainer, run artifacts."""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping

import yaml

from .. import data as datasets
from ..core.types import RunResult
from ..models import DenseAnnModel, ModelConfig, clip_gradient
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.summary import write_summary
from .trainer import Trainer, TrainerConfig

logger = logging.getLogger(__name__)

_REQUIRED_SECTIONS = {"data", "model", "train"}

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor_least_squares": {
        "data": {"name": "xor", "options": {"repeat": 1}},
        "model": {
            "layers": [
                {"size": 4, "activation": "tanh"},
                {"size": 1, "activation": "linear"},
            ],
            "init_scale": 0.5,
        },
        "train": {
            "epochs": 200,
            "batch_size": 4,
            "seed": 3,
            "lr": 0.1,
            "strategy": "least_squares",
            "run_dir": "runs/xor-least-squares",
        },
    },
    "blobs_softmax": {
        "data": {"name": "blobs", "options": {"num_classes": 3, "n_per_class": 20, "seed": 0}},
        "model": {
            "layers": [
                {"size": 8, "activation": "tanh"},
                {"size": 3, "activation": "softmax"},
            ],
            "init_scale": 0.3,
        },
        "train": {
            "epochs": 30,
            "batch_size": 10,
            "seed": 7,
            "lr": 0.05,
            "strategy": "softmax_log_likelihood",
            "l2_lambdas": [0.0001, 0.0001],
            "run_dir": "runs/blobs-softmax",
        },
    },
    "autoencoder_tied": {
        "data": {"name": "one_hot", "options": {"size": 4}},
        "model": {
            "layers": [
                {"size": 3, "activation": "sigmoid"},
                {"size": 4, "activation": "sigmoid"},
            ],
            "init_scale": 0.5,
        },
        "train": {
            "epochs": 100,
            "batch_size": 4,
            "seed": 1,
            "lr": 0.5,
            "strategy": "autoencoder_least_squares",
            "run_dir": "runs/autoencoder-tied",
        },
    },
}


def load_config(path: str | Path) -> Mapping[str, object]:
    """Read a JSON or YAML config file into a mapping."""

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in {".yaml", ".yml", ".json"}:
        raise ValueError(f"Unsupported config file type: {path.suffix}")
    text = path.read_text()
    if suffix == ".json":
        data = json.loads(text or "{}")
    else:
        data = yaml.safe_load(text) or {}

    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    return data


def presets() -> Mapping[str, Mapping[str, object]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> Mapping[str, object]:
    try:
        return deepcopy(_PRESETS[name])
    except KeyError:
        available = ", ".join(sorted(_PRESETS))
        raise KeyError(f"Unknown preset {name!r}. Available presets: {available}") from None


def build_model(model_cfg: Mapping[str, object], d_in: int, seed: int) -> DenseAnnModel:
    """Create a :class:`DenseAnnModel` from the ``model`` config section."""

    configured = model_cfg.get("d_in")
    if configured is not None and int(configured) != d_in:  # type: ignore[arg-type]
        raise ValueError(f"Configured d_in={configured} but the dataset has {d_in} inputs")
    config = ModelConfig.from_mapping({**model_cfg, "d_in": d_in})
    clip_norm = model_cfg.get("clip_norm")
    return DenseAnnModel(
        config=config,
        seed=seed,
        init_scale=float(model_cfg.get("init_scale", 0.1)),  # type: ignore[arg-type]
        gradient_post_processor=clip_gradient(float(clip_norm)) if clip_norm else None,  # type: ignore[arg-type]
    )


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    """Train a model as described by ``config`` and write its run artifacts."""

    missing = _REQUIRED_SECTIONS - set(config)
    if missing:
        raise KeyError(f"Config is missing required sections: {', '.join(sorted(missing))}")
    data_cfg = dict(config["data"])  # type: ignore[arg-type]
    model_cfg = dict(config["model"])  # type: ignore[arg-type]
    train_cfg = dict(config["train"])  # type: ignore[arg-type]

    seed = int(train_cfg.get("seed", 0))
    dataset = datasets.get(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    model = build_model(model_cfg, dataset.data_spec.d_in, seed)
    if model.config.layer_dims[-1] != dataset.data_spec.d_out:
        raise ValueError(
            f"Model produces {model.config.layer_dims[-1]} outputs but the dataset "
            f"has {dataset.data_spec.d_out} targets"
        )
    trainer_config = TrainerConfig.from_mapping(train_cfg)

    run_dir = _resolve_run_dir(train_cfg, dataset.name, trainer_config.strategy)
    run_dir.mkdir(parents=True, exist_ok=True)

    _print_startup_summary(
        dataset_name=dataset.name,
        dims=model.config.layer_dims,
        activations=model.describe().activations,
        strategy=trainer_config.strategy,
        learning_rate=trainer_config.learning_rate,
        param_count=model.parameter_count(),
    )

    jsonl = JsonlSink(run_dir / "metrics.jsonl", split="train", seed=seed)
    csv_sink = CsvSink(run_dir / "metrics.csv", split="train")
    trainer = Trainer(trainer_config, callbacks=[jsonl, csv_sink])
    loader = datasets.BatchLoader(
        dataset.examples,
        int(train_cfg.get("batch_size", 1)),  # type: ignore[arg-type]
        seed=seed,
        shuffle=bool(train_cfg.get("shuffle", True)),
    )

    started = time.perf_counter()
    fit = trainer.fit(model, loader, epochs=int(train_cfg.get("epochs", 1)))  # type: ignore[arg-type]
    logger.info("trained %d steps in %.3fs", fit.steps, time.perf_counter() - started)

    checkpoint = model.save(run_dir / "last.ckpt")
    safe_config = json.loads(json.dumps(config))
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))
    (run_dir / "metrics_final.json").write_text(
        json.dumps(dict(trainer.evaluate(model, dataset.examples)), indent=2)
    )
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=dataset.provenance,
        model={
            "layer_dims": model.config.layer_dims,
            "activations": model.describe().activations,
            "parameters": model.parameter_count(),
        },
    )
    summary = write_summary(jsonl.path, run_dir / "summary.json")

    return RunResult(
        steps=fit.steps,
        metrics_path=str(jsonl.path),
        manifest_path=manifest,
        summary_path=str(summary),
        checkpoint_path=str(checkpoint),
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str, strategy: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / strategy


def _print_startup_summary(
    *,
    dataset_name: str,
    dims: List[int],
    activations: List[str],
    strategy: str,
    learning_rate: float,
    param_count: int,
) -> None:
    print("=== backpropnet run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Dimensions    : {dims}")
    print(f"Activations   : {activations}")
    print(f"Strategy      : {strategy}")
    print(f"Learning rate : {learning_rate}")
    print(f"Parameters    : {param_count}")
    print("=======================")


__all__ = ["build_model", "load_config", "load_preset", "presets", "run_pipeline"]
