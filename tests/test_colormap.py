import pytest

from snlds.colormap import STATE_PALETTE, Rgb, state_color, viridis_rgb


def test_viridis_endpoints_match_anchors():
    assert viridis_rgb(0.0) == (68, 1, 84)
    assert viridis_rgb(1.0) == (253, 231, 37)


def test_viridis_clamps_out_of_range_inputs():
    assert viridis_rgb(-0.5) == viridis_rgb(0.0)
    assert viridis_rgb(2.0) == viridis_rgb(1.0)


def test_state_color_wraps_palette():
    palette_len = len(STATE_PALETTE)
    assert state_color(0) == state_color(palette_len)
    assert state_color(1) == state_color(palette_len + 1)


def test_viridis_interior_anchors_hit_exactly():
    assert viridis_rgb(0.25) == (59, 82, 139)
    assert viridis_rgb(0.5) == (33, 145, 140)
    assert viridis_rgb(0.75) == (94, 201, 98)


def test_viridis_returns_named_channels():
    colour = viridis_rgb(0.0)
    assert isinstance(colour, Rgb)
    assert (colour.r, colour.g, colour.b) == (68, 1, 84)


@pytest.mark.parametrize("value", [0.05, 0.125, 0.2])
def test_viridis_interpolates_between_first_two_anchors(value):
    colour = viridis_rgb(value)
    lower = viridis_rgb(0.0)
    upper = viridis_rgb(0.25)
    for channel, lo, hi in zip(colour, lower, upper):
        assert min(lo, hi) <= channel <= max(lo, hi)


def test_state_color_first_entry_is_palette_start():
    assert state_color(0) == STATE_PALETTE[0]
    assert state_color(0) == (31, 119, 180)