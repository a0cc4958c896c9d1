import json
from pathlib import Path

import pytest

from backpropnet.models import DenseAnnModel
from backpropnet.training import pipelines


def _config(run_dir):
    config = pipelines.load_preset("blobs_softmax")
    config["train"]["epochs"] = 3
    config["train"]["run_dir"] = str(run_dir)
    return config


def test_pipeline_produces_artifacts(tmp_path):
    config = _config(tmp_path / "run")
    result = pipelines.run_pipeline(config)

    assert result.steps == 3 * 6
    metrics = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines() if line]
    step_records = [m for m in metrics if "step" in m]
    epoch_records = [m for m in metrics if "epoch" in m]
    assert len(step_records) == 18
    assert len(epoch_records) == 3
    assert all("loss" in m and m["split"] == "train" for m in metrics)

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["train"]["strategy"] == "softmax_log_likelihood"
    assert manifest["dataset"]["type"] == "blobs"
    assert manifest["model"]["layer_dims"] == [2, 8, 3]

    summary = json.loads(Path(result.summary_path).read_text())
    assert summary["epochs"] == 3
    assert "loss" in summary["metrics"]
    assert (tmp_path / "run" / "metrics.csv").exists()
    assert DenseAnnModel.load(result.checkpoint_path).describe().layer_dims == [2, 8, 3]


def test_pipeline_is_deterministic(tmp_path):
    first = pipelines.run_pipeline(_config(tmp_path / "a"))
    second = pipelines.run_pipeline(_config(tmp_path / "b"))
    strip = lambda text: [  # noqa: E731
        {k: v for k, v in json.loads(line).items() if k != "sha"} for line in text.splitlines()
    ]
    assert strip(Path(first.metrics_path).read_text()) == strip(Path(second.metrics_path).read_text())


def test_every_preset_builds(tmp_path):
    for name in pipelines.presets():
        config = pipelines.load_preset(name)
        config["train"]["epochs"] = 1
        config["train"]["run_dir"] = str(tmp_path / name)
        assert pipelines.run_pipeline(config).steps >= 1


def test_config_loading(tmp_path):
    yaml_path = tmp_path / "cfg.yaml"
    yaml_path.write_text("train:\n  lr: 0.2\n  epochs: 2\n")
    assert pipelines.load_config(yaml_path) == {"train": {"lr": 0.2, "epochs": 2}}

    json_path = tmp_path / "cfg.json"
    json_path.write_text(json.dumps({"train": {"lr": 0.3}}))
    assert pipelines.load_config(json_path)["train"]["lr"] == 0.3

    with pytest.raises(ValueError):
        pipelines.load_config(tmp_path / "cfg.toml")
    list_path = tmp_path / "list.yaml"
    list_path.write_text("- 1\n- 2\n")
    with pytest.raises(TypeError):
        pipelines.load_config(list_path)


def test_mismatched_model_is_rejected(tmp_path):
    config = _config(tmp_path / "run")
    config["model"]["layers"][-1]["size"] = 2
    with pytest.raises(ValueError):
        pipelines.run_pipeline(config)
    with pytest.raises(KeyError):
        pipelines.run_pipeline({"data": {"name": "xor"}})
    with pytest.raises(KeyError):
        pipelines.load_preset("missing")
