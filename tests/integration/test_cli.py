import json
from pathlib import Path

import pytest

from cli.main import main


def test_cli_basic_preset(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    main(["--preset", "xor_least_squares", "--epochs", "5"])
    run_dir = Path("runs/xor-least-squares")
    assert (run_dir / "metrics.jsonl").exists()
    assert (run_dir / "manifest.json").exists()
    assert (run_dir / "last.ckpt").exists()
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["steps"] == 5


def test_cli_config_override(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    override = tmp_path / "override.yaml"
    override.write_text("train:\n  epochs: 2\n  lr: 0.3\n")
    dump = tmp_path / "resolved.json"
    main(
        [
            "--preset",
            "autoencoder_tied",
            "--config",
            str(override),
            "--run-dir",
            "out",
            "--dump-config",
            str(dump),
        ]
    )
    resolved = json.loads(dump.read_text())
    assert resolved["train"]["lr"] == 0.3
    assert resolved["train"]["strategy"] == "autoencoder_least_squares"
    assert (tmp_path / "out" / "summary.json").exists()


def test_cli_lists_presets(capsys):
    with pytest.raises(SystemExit):
        main(["--list-presets"])
    assert "blobs_softmax" in capsys.readouterr().out.split()
