"""Log SNLDS sequences, posteriors and transition matrices into a :class:`Recording`."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numpy.typing import ArrayLike

from .colormap import STATE_STRIP_HEIGHT, TRANSITION_EDGE_EPSILON, state_color, viridis_rgb
from .recording import GraphEdges, GraphNodes, Image, LineStrips2D, Recording, Scalars


def _trajectory(values: ArrayLike, what: str) -> LineStrips2D:
    array = np.asarray(values)
    if array.ndim != 2 or array.shape[1] < 2:
        raise ValueError(f"{what}: expected a [T, 2] array, got shape {array.shape}")
    return LineStrips2D([[(row[0], row[1]) for row in array]])


def log_latent_z(rec: Recording, seq_idx: int, latents: ArrayLike) -> None:
    """Log a ``[T, 2]`` latent trajectory as a line strip."""
    strip = _trajectory(latents, "log_latent_z")
    rec.set_time_sequence("sequence", seq_idx)
    rec.log("snlds/latent/z", strip)


def log_obs_x(rec: Recording, seq_idx: int, obs: ArrayLike) -> None:
    """Log a ``[T, 2]`` observation trajectory as a line strip."""
    strip = _trajectory(obs, "log_obs_x")
    rec.set_time_sequence("sequence", seq_idx)
    rec.log("snlds/obs/x", strip)


def log_state_s(rec: Recording, seq_idx: int, states: Sequence[int]) -> None:
    """Log the discrete state at each timestep as a scalar timeseries."""
    for t, state in enumerate(states):
        rec.set_time_sequence("sequence", seq_idx)
        rec.set_time_sequence("time", t)
        rec.log("snlds/state/s", Scalars(int(state)))


def log_posteriors(rec: Recording, seq_idx: int, gamma: ArrayLike) -> None:
    """Log ``[T, K]`` state marginals under ``snlds/state/gamma_{k}``."""
    array = np.asarray(gamma)
    if array.ndim != 2:
        raise ValueError(f"log_posteriors: expected [T, K], got shape {array.shape}")
    for t, row in enumerate(array):
        rec.set_time_sequence("sequence", seq_idx)
        rec.set_time_sequence("time", t)
        for k, value in enumerate(row):
            rec.log(f"snlds/state/gamma_{k}", Scalars(value))


def log_reconstructions(rec: Recording, seq_idx: int, x_hat: ArrayLike) -> None:
    """Log ``[T, D]`` reconstructions: a line strip for ``D == 2``, per-dimension scalars otherwise."""
    array = np.asarray(x_hat)
    if array.ndim != 2:
        raise ValueError(f"log_reconstructions: expected [T, D], got shape {array.shape}")
    rec.set_time_sequence("sequence", seq_idx)
    if array.shape[1] == 2:
        rec.log("snlds/obs/x_hat", LineStrips2D([[(row[0], row[1]) for row in array]]))
        return
    for t, row in enumerate(array):
        rec.set_time_sequence("sequence", seq_idx)
        rec.set_time_sequence("time", t)
        for d, value in enumerate(row):
            rec.log(f"snlds/obs/x_hat_d{d}", Scalars(value))


def log_train_scalars(
    rec: Recording, step: int, elbo: float, mse: float, temperature: float
) -> None:
    """Log one optimiser step's diagnostics on the ``train_step`` timeline."""
    rec.set_time_sequence("train_step", step)
    rec.log("snlds/train/elbo", Scalars(elbo))
    rec.log("snlds/train/mse", Scalars(mse))
    rec.log("snlds/train/temperature", Scalars(temperature))


def log_transition_matrix(rec: Recording, entity_path: str, q_matrix: ArrayLike) -> None:
    """Log a ``[K, K]`` transition matrix as a directed graph plus a weight heatmap.

    Edges with ``|Q[i, j]| < TRANSITION_EDGE_EPSILON`` are left out; the full matrix
    goes to ``{entity_path}/weights`` as a viridis image.
    """
    q = np.asarray(q_matrix)
    if q.ndim != 2 or q.shape[0] != q.shape[1]:
        raise ValueError(f"transition matrix must be square, got {q.shape}")
    num_states = q.shape[0]
    node_ids = [f"s{i}" for i in range(num_states)]
    rec.log(
        entity_path,
        GraphNodes(node_ids, node_ids, [state_color(i) for i in range(num_states)]),
    )
    edges = [
        (node_ids[i], node_ids[j])
        for i in range(num_states)
        for j in range(num_states)
        if not abs(float(q[i, j])) < TRANSITION_EDGE_EPSILON
    ]
    rec.log(entity_path, GraphEdges(edges, directed=True))
    pixels = bytes(b for row in q for value in row for b in viridis_rgb(value))
    rec.log(f"{entity_path}/weights", Image(pixels, num_states, num_states, "RGB"))


def log_state_strip(rec: Recording, entity_path: str, states: Sequence[int]) -> None:
    """Log states as a ``STATE_STRIP_HEIGHT``-tall coloured band, one column per timestep.

    Negative state ids are drawn with the colour of state 0.
    """
    if len(states) == 0:
        raise ValueError("log_state_strip: states is empty")
    row = bytes(b for state in states for b in state_color(max(int(state), 0)))
    rec.log(entity_path, Image(row * STATE_STRIP_HEIGHT, len(states), STATE_STRIP_HEIGHT, "RGB"))


def log_gamma_heatmap(rec: Recording, entity_path: str, gamma: ArrayLike) -> None:
    """Log ``[T, K]`` marginals as a ``K x T`` viridis image (row k = state k)."""
    array = np.asarray(gamma)
    if array.ndim != 2 or array.shape[0] == 0 or array.shape[1] == 0:
        raise ValueError(f"log_gamma_heatmap: empty gamma {array.shape}")
    num_timesteps, num_states = array.shape
    pixels = bytes(b for state_row in array.T for value in state_row for b in viridis_rgb(value))
    rec.log(entity_path, Image(pixels, num_timesteps, num_states, "RGB"))


def log_render_frames(rec: Recording, seq_idx: int, frames: ArrayLike) -> None:
    """Log ``[T, res, res, 3]`` frames with values in [0, 1] as per-timestep images."""
    array = np.asarray(frames, dtype=np.float64)
    if array.ndim != 4 or array.shape[3] != 3:
        raise ValueError(f"log_render_frames: expected [T, H, W, 3], got {array.shape}")
    _, height, width, _ = array.shape
    for t, frame in enumerate(array):
        rec.set_time_sequence("sequence", seq_idx)
        rec.set_time_sequence("time", t)
        scaled = np.floor(np.clip(np.nan_to_num(frame, nan=0.0), 0.0, 1.0) * 255.0 + 0.5)
        rec.log("snlds/render/frame", Image(scaled.astype(np.uint8).tobytes(), width, height, "RGB"))