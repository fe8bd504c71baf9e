"""Colour palettes for state-aware visualisations."""

from __future__ import annotations

import math
from typing import NamedTuple


class Rgb(NamedTuple):
    """An 8-bit RGB triplet."""

    r: int
    g: int
    b: int


# Categorical palette for discrete states (matplotlib ``tab10``).
STATE_PALETTE: tuple[Rgb, ...] = tuple(
    Rgb(*channels)
    for channels in (
        (31, 119, 180),
        (255, 127, 14),
        (44, 160, 44),
        (214, 39, 40),
        (148, 103, 189),
        (140, 86, 75),
        (227, 119, 194),
        (127, 127, 127),
        (188, 189, 34),
        (23, 190, 207),
    )
)

# Pixel height of a single-sequence state strip image.
STATE_STRIP_HEIGHT = 16

# Transitions with |q_ij| below this are left out of Markov-chain graphs.
TRANSITION_EDGE_EPSILON = 1e-3

# Viridis sampled at t = 0, 0.25, 0.5, 0.75, 1.
_VIRIDIS_ANCHORS: tuple[tuple[float, float, float], ...] = (
    (68.0, 1.0, 84.0),
    (59.0, 82.0, 139.0),
    (33.0, 145.0, 140.0),
    (94.0, 201.0, 98.0),
    (253.0, 231.0, 37.0),
)


def _round_channel(value: float) -> int:
    if math.isnan(value):
        return 0
    rounded = math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)
    return int(min(max(rounded, 0), 255))


def viridis_rgb(value: float) -> Rgb:
    """Map ``value`` in [0, 1] (clamped) to a colour on a five-stop viridis ramp."""
    value = float(value)
    if math.isnan(value):
        return Rgb(0, 0, 0)
    clamped = min(max(value, 0.0), 1.0)
    scaled = clamped * (len(_VIRIDIS_ANCHORS) - 1)
    lower_idx = math.floor(scaled)
    upper_idx = min(lower_idx + 1, len(_VIRIDIS_ANCHORS) - 1)
    frac = scaled - lower_idx
    lower = _VIRIDIS_ANCHORS[lower_idx]
    upper = _VIRIDIS_ANCHORS[upper_idx]
    return Rgb(*(_round_channel(a + (b - a) * frac) for a, b in zip(lower, upper)))


def state_color(state_index: int) -> Rgb:
    """Categorical colour for a discrete state, wrapping around the palette."""
    return STATE_PALETTE[state_index % len(STATE_PALETTE)]