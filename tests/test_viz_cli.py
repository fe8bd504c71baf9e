import numpy as np
import pytest

from snlds.data import Manifest, save_safetensors
from snlds.recording import GraphNodes, Recording
from snlds.viz_cli import build_parser, main


def _dataset(directory, *, num_samples=3, seq_length=4, with_q=True, num_samples_eval=0):
    directory.mkdir(parents=True, exist_ok=True)
    manifest = Manifest(
        num_states=3,
        dim_obs=2,
        dim_latent=2,
        seq_length=seq_length,
        num_samples=num_samples,
        num_samples_eval=num_samples_eval,
        data_type="cosine",
    )
    manifest.save(directory / "metadata.json")
    rng = np.random.default_rng(0)
    tensors = {}
    for split, n in (("train", num_samples), ("test", 1)):
        tensors[f"latents_{split}"] = rng.normal(size=(n, seq_length, 2)).astype(np.float32)
        tensors[f"obs_{split}"] = rng.normal(size=(n, seq_length, 2)).astype(np.float32)
        tensors[f"states_{split}"] = rng.integers(0, 3, size=(n, seq_length)).astype(np.int32)
    if with_q:
        tensors["q_true"] = np.array(
            [[0.7, 0.2, 0.1], [0.1, 0.8, 0.1], [0.0, 0.0, 1.0]], dtype=np.float32
        )
    save_safetensors(directory / "sequences.safetensors", tensors)
    return tensors


def test_cli_smoke_writes_recording(tmp_path, capsys):
    input_dir = tmp_path / "dataset"
    tensors = _dataset(input_dir)
    out = tmp_path / "out.rrd"
    code = main(["--input", str(input_dir), "--sequences", "2", "--output", str(out)])
    assert code == 0
    assert out.stat().st_size > 0
    assert "Saved to" in capsys.readouterr().out
    rec = Recording.load(out)
    strips = rec.entries_for("snlds/state/strip_true")
    assert [t["sequence"] for t, _ in strips] == [0, 1]
    nodes = rec.entries_for("snlds/markov/q_true")[0][1]
    assert isinstance(nodes, GraphNodes) and nodes.node_ids == ("s0", "s1", "s2")
    latent = rec.entries_for("snlds/latent/z")
    assert len(latent) == 2
    expected = tensors["latents_train"][1]
    assert latent[1][1].strips[0] == tuple((float(x), float(y)) for x, y in expected)
    states = rec.entries_for("snlds/state/s")
    assert len(states) == 2 * 4


def test_cli_test_split_uses_one_sequence(tmp_path):
    input_dir = tmp_path / "dataset"
    _dataset(input_dir)
    out = tmp_path / "test.rrd"
    assert main(["--input", str(input_dir), "--split", "test", "--output", str(out)]) == 0
    assert len(Recording.load(out).entries_for("snlds/obs/x")) == 1


def test_cli_empty_eval_split_fails(tmp_path, capsys):
    input_dir = tmp_path / "dataset"
    _dataset(input_dir)
    out = tmp_path / "eval.rrd"
    assert main(["--input", str(input_dir), "--split", "eval", "--output", str(out)]) == 1
    assert "0 sequences" in capsys.readouterr().err
    assert not out.exists()


def test_cli_unknown_split_fails(tmp_path, capsys):
    input_dir = tmp_path / "dataset"
    _dataset(input_dir)
    assert main(["--input", str(input_dir), "--split", "bogus"]) == 1
    assert "unknown split" in capsys.readouterr().err


def test_cli_missing_q_true_fails(tmp_path):
    input_dir = tmp_path / "dataset"
    _dataset(input_dir, with_q=False)
    assert main(["--input", str(input_dir), "--output", str(tmp_path / "o.rrd")]) == 1


def test_parser_defaults_and_required_input():
    args = build_parser().parse_args(["--input", "x"])
    assert args.sequences == 5
    assert args.split == "train"
    assert args.output.name == "snlds_gt.rrd"
    with pytest.raises(SystemExit):
        build_parser().parse_args([])