"""Minibatch logging cadence and transition-matrix printing for training loops."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TextIO

import numpy as np
from numpy.typing import ArrayLike

from .data import SEQUENCES_FILENAME, DataError, read_tensor


def should_log_minibatch(log_every_batch: int, batch_idx: int, total_batches: int) -> bool:
    """Whether to print diagnostics for 0-based minibatch ``batch_idx``.

    ``0`` disables per-batch lines; otherwise logs every ``log_every_batch`` batches
    (including batch 0) and always the last batch of the epoch.
    """
    return log_every_batch > 0 and (
        batch_idx % log_every_batch == 0 or batch_idx + 1 == total_batches
    )


def should_log_transition_every_n_batches(every: int, batch_idx: int) -> bool:
    """Whether to print the learned ``Q`` after 0-based minibatch ``batch_idx``."""
    return every > 0 and (batch_idx + 1) % every == 0


def format_matrix(matrix: ArrayLike) -> str:
    """Render a square matrix as ``  [i] v0  v1 ...`` lines with four decimals."""
    rows = np.asarray(matrix, dtype=np.float64)
    return "\n".join(
        f"  [{i}] " + "  ".join(f"{value:.4f}" for value in row) for i, row in enumerate(rows)
    )


def learned_transition_matrix(q_logits: ArrayLike, temperature: float) -> np.ndarray:
    """Row-stochastic ``Q = softmax(q_logits / temperature)`` along each row."""
    logits = np.asarray(q_logits, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        scaled = logits / temperature
        shifted = scaled - scaled.max(axis=1, keepdims=True)
        log_q = shifted - np.log(np.exp(shifted).sum(axis=1, keepdims=True))
        return np.exp(log_q)


def _emit(out: TextIO, text: str) -> None:
    print(text, file=out)


def log_true_transition_matrix_from_data(
    data_dir: str | Path, num_states: int, out: TextIO | None = None
) -> bool:
    """Print ``q_true`` from the dataset's SafeTensors file; return whether it was printed."""
    out = sys.stdout if out is None else out
    data_dir = Path(data_dir)
    _emit(out, "--- true Markov Q (from `q_true` in sequences.safetensors) ---")
    try:
        st_path = data_dir / SEQUENCES_FILENAME
        if not st_path.is_file():
            shard0 = data_dir / "shard_000" / SEQUENCES_FILENAME
            if not shard0.is_file():
                _emit(
                    out,
                    f'true transition Q: missing file "{st_path}" '
                    "(expected next to metadata.json)",
                )
                return False
            st_path = shard0
        try:
            flat = read_tensor(st_path, "q_true").astype(np.float64).ravel()
        except DataError as exc:
            _emit(
                out,
                f'true transition Q: could not read tensor `q_true` from "{st_path}": {exc}',
            )
            _emit(
                out,
                "  (Regenerate data with a current generator if you need q_true; "
                "older exports may omit it.)",
            )
            return False
        if flat.size != num_states * num_states:
            _emit(
                out,
                f"true transition Q: `q_true` has {flat.size} entries, expected K² with "
                f"K={num_states} from manifest; skipping print",
            )
            return False
        _emit(out, "true transition Q from data (rows=from-state, cols=to-state):")
        if num_states:
            _emit(out, format_matrix(flat.reshape(num_states, num_states)))
        return True
    finally:
        out.flush()


def log_learned_transition_matrix(
    line_prefix: str,
    epoch: int,
    q_logits: ArrayLike,
    temperature: float,
    batch_in_epoch: tuple[int, int] | None = None,
    out: TextIO | None = None,
) -> bool:
    """Print the learned row-stochastic ``Q``; return whether anything was printed.

    ``batch_in_epoch`` as ``(batch_1based, n_batches)`` labels a mid-epoch print;
    ``None`` labels the epoch summary. Non-square or empty logits print nothing.
    """
    out = sys.stdout if out is None else out
    logits = np.asarray(q_logits, dtype=np.float64)
    if logits.ndim != 2:
        return False
    k, k2 = logits.shape
    if k == 0 or k2 != k:
        return False
    q = learned_transition_matrix(logits, temperature)
    if batch_in_epoch is None:
        header = (
            f"{line_prefix}epoch {epoch:04} learned transition Q "
            "(rows=from-state, cols=to-state):"
        )
    else:
        batch, n_batches = batch_in_epoch
        header = (
            f"{line_prefix}epoch {epoch:04} batch {batch:04}/{n_batches} learned transition Q "
            "(rows=from-state, cols=to-state):"
        )
    _emit(out, header)
    _emit(out, format_matrix(q))
    out.flush()
    return True