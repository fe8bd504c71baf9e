import pytest

from snlds.colormap import Rgb
from snlds.recording import GraphEdges, GraphNodes, Image, LineStrips2D, Recording, Scalars


def test_log_stamps_current_time():
    rec = Recording("t")
    rec.set_time_sequence("sequence", 3)
    rec.log("a", Scalars(1.5))
    rec.set_time_sequence("time", 7)
    rec.log("a", Scalars(2.5))
    entries = rec.entries_for("a")
    assert entries[0] == ({"sequence": 3}, Scalars(1.5))
    assert entries[1] == ({"sequence": 3, "time": 7}, Scalars(2.5))


def test_entries_for_unknown_path_is_empty():
    rec = Recording()
    rec.log("a", Scalars(1.0))
    assert rec.entries_for("b") == []


def test_timepoint_is_a_snapshot():
    rec = Recording()
    rec.set_time_sequence("time", 1)
    rec.log("a", Scalars(0.0))
    rec.set_time_sequence("time", 2)
    assert rec.entries_for("a")[0][0] == {"time": 1}


def test_log_rejects_non_archetype():
    rec = Recording()
    with pytest.raises(TypeError):
        rec.log("a", 1.0)


def test_log_rejects_empty_path():
    rec = Recording()
    with pytest.raises(ValueError):
        rec.log("", Scalars(1.0))


def test_image_size_validated():
    with pytest.raises(ValueError):
        Image(b"\x00\x01", 1, 1, "RGB")
    with pytest.raises(ValueError):
        Image(b"", 0, 0, "XYZ")


def test_graph_nodes_length_mismatch():
    with pytest.raises(ValueError):
        GraphNodes(["s0", "s1"], labels=["s0"])


def test_save_load_round_trip(tmp_path):
    rec = Recording("roundtrip")
    rec.set_time_sequence("sequence", 0)
    rec.log("lines", LineStrips2D([[(0.1, 0.2), (0.3, 0.4)]]))
    rec.log("value", Scalars(-1.25))
    rec.log("graph", GraphNodes(["s0", "s1"], ["s0", "s1"], [Rgb(1, 2, 3), Rgb(4, 5, 6)]))
    rec.log("graph", GraphEdges([("s0", "s1")], directed=True))
    rec.set_time_sequence("time", 4)
    rec.log("img", Image(bytes(range(12)), 2, 2, "RGB"))
    path = tmp_path / "out.rrd"
    rec.save(path)
    loaded = Recording.load(path)
    assert loaded.application_id == "roundtrip"
    for entity in ("lines", "value", "graph", "img"):
        assert loaded.entries_for(entity) == rec.entries_for(entity)


def test_load_malformed(tmp_path):
    path = tmp_path / "bad.rrd"
    path.write_text('{"entries": []}', encoding="utf-8")
    with pytest.raises(ValueError):
        Recording.load(path)