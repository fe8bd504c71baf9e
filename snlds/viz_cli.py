"""Command that records ground-truth SNLDS sequences for visual inspection."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from .data import MANIFEST_FILENAME, SEQUENCES_FILENAME, DataError, load_manifest, read_tensor
from .recording import Recording
from .viz_log import log_latent_z, log_obs_x, log_state_s, log_state_strip, log_transition_matrix

_SPLIT_KEYS = {
    "train": ("latents_train", "obs_train", "states_train"),
    "test": ("latents_test", "obs_test", "states_test"),
    "eval": ("latents_eval", "obs_eval", "states_eval"),
}


def _uint(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snlds-viz", description="Visualise SNLDS ground-truth sequences as a recording."
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="Directory containing sequences.safetensors + metadata.json",
    )
    parser.add_argument("--sequences", type=_uint, default=5, help="Number of sequences to log")
    parser.add_argument("--split", default="train", help="Which split to visualise")
    parser.add_argument(
        "--output", type=Path, default=Path("snlds_gt.rrd"), help="Output recording path"
    )
    return parser


def _flat(path: Path, name: str, dtype: type, need: int) -> np.ndarray:
    values = read_tensor(path, name).astype(dtype).ravel()
    if values.size < need:
        raise DataError(f"tensor {name} in {path} has {values.size} values, need {need}")
    return values


def _run(args: argparse.Namespace) -> Path:
    manifest_path = args.input / MANIFEST_FILENAME
    st_path = args.input / SEQUENCES_FILENAME
    manifest = load_manifest(manifest_path)

    if args.split not in _SPLIT_KEYS:
        raise ValueError(f"unknown split {args.split!r}; use train, test, or eval")
    latent_key, obs_key, state_key = _SPLIT_KEYS[args.split]
    n = {
        "train": manifest.num_samples,
        "test": max(manifest.num_samples // 10, 1),
        "eval": manifest.num_samples_eval,
    }[args.split]
    if n == 0:
        raise ValueError(
            f"split {args.split!r} has 0 sequences in {manifest_path} - point --input at the "
            "shard that carries it (e.g. shard_000) or regenerate with the appropriate fraction"
        )

    t = manifest.seq_length
    d_lat = manifest.dim_latent
    d_obs = manifest.dim_obs
    k = manifest.num_states
    num_seqs = min(args.sequences, n)

    latents = _flat(st_path, latent_key, np.float32, num_seqs * t * d_lat if d_lat == 2 else 0)
    obs = _flat(st_path, obs_key, np.float32, num_seqs * t * d_obs if d_obs == 2 else 0)
    states = _flat(st_path, state_key, np.int32, num_seqs * t)
    q_true = read_tensor(st_path, "q_true").astype(np.float32)
    if q_true.size != k * k:
        raise DataError(f"q_true has {q_true.size} entries, expected {k * k}")
    q_true = q_true.reshape(k, k)

    rec = Recording("snlds-viz")
    log_transition_matrix(rec, "snlds/markov/q_true", q_true)

    for seq in range(num_seqs):
        seq_states = [int(s) for s in states[seq * t : (seq + 1) * t]]
        log_state_s(rec, seq, seq_states)
        rec.set_time_sequence("sequence", seq)
        log_state_strip(rec, "snlds/state/strip_true", seq_states)
        if d_lat == 2:
            log_latent_z(rec, seq, latents[seq * t * 2 : (seq + 1) * t * 2].reshape(t, 2))
        if d_obs == 2:
            log_obs_x(rec, seq, obs[seq * t * 2 : (seq + 1) * t * 2].reshape(t, 2))

    rec.save(args.output)
    return args.output


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        output = _run(args)
    except (DataError, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f'Saved to "{output}"')
    return 0


if __name__ == "__main__":
    sys.exit(main())