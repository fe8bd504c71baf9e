"""In-memory recording stream of timestamped visual archetypes, saved as JSON."""

from __future__ import annotations

import base64
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from .colormap import Rgb

_CHANNELS = {"L": 1, "RGB": 3, "RGBA": 4}


@dataclass(frozen=True)
class LineStrips2D:
    """One or more 2-D polylines."""

    strips: tuple[tuple[tuple[float, float], ...], ...]

    def __post_init__(self) -> None:
        strips = tuple(
            tuple((float(x), float(y)) for x, y in strip) for strip in self.strips
        )
        object.__setattr__(self, "strips", strips)


@dataclass(frozen=True)
class Scalars:
    """A single scalar sample for a timeseries."""

    value: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", float(self.value))


@dataclass(frozen=True)
class GraphNodes:
    """Graph nodes with optional labels and colours."""

    node_ids: tuple[str, ...]
    labels: tuple[str, ...] | None = None
    colors: tuple[Rgb, ...] | None = None

    def __post_init__(self) -> None:
        node_ids = tuple(str(node) for node in self.node_ids)
        object.__setattr__(self, "node_ids", node_ids)
        if self.labels is not None:
            labels = tuple(str(label) for label in self.labels)
            if len(labels) != len(node_ids):
                raise ValueError("GraphNodes: labels and node_ids differ in length")
            object.__setattr__(self, "labels", labels)
        if self.colors is not None:
            colors = tuple(Rgb(*(int(c) for c in color)) for color in self.colors)
            if len(colors) != len(node_ids):
                raise ValueError("GraphNodes: colors and node_ids differ in length")
            object.__setattr__(self, "colors", colors)


@dataclass(frozen=True)
class GraphEdges:
    """Graph edges between node ids, directed or undirected."""

    edges: tuple[tuple[str, str], ...]
    directed: bool = True

    def __post_init__(self) -> None:
        edges = tuple((str(src), str(dst)) for src, dst in self.edges)
        object.__setattr__(self, "edges", edges)
        object.__setattr__(self, "directed", bool(self.directed))


@dataclass(frozen=True)
class Image:
    """An 8-bit image stored row-major as interleaved channel bytes."""

    data: bytes
    width: int
    height: int
    color_model: str = "RGB"

    def __post_init__(self) -> None:
        data = bytes(self.data)
        object.__setattr__(self, "data", data)
        if self.color_model not in _CHANNELS:
            raise ValueError(f"Image: unknown color model {self.color_model!r}")
        if self.width < 0 or self.height < 0:
            raise ValueError("Image: dimensions must be non-negative")
        expected = self.width * self.height * _CHANNELS[self.color_model]
        if len(data) != expected:
            raise ValueError(
                f"Image: {len(data)} bytes given, {self.width}x{self.height} "
                f"{self.color_model} needs {expected}"
            )


Archetype = Union[LineStrips2D, Scalars, GraphNodes, GraphEdges, Image]
_ARCHETYPES = (LineStrips2D, Scalars, GraphNodes, GraphEdges, Image)


def _encode(archetype: Archetype) -> dict[str, Any]:
    match archetype:
        case LineStrips2D(strips=strips):
            return {"type": "LineStrips2D", "strips": [[list(p) for p in s] for s in strips]}
        case Scalars(value=value):
            return {"type": "Scalars", "value": value}
        case GraphNodes(node_ids=ids, labels=labels, colors=colors):
            return {
                "type": "GraphNodes",
                "node_ids": list(ids),
                "labels": None if labels is None else list(labels),
                "colors": None if colors is None else [list(c) for c in colors],
            }
        case GraphEdges(edges=edges, directed=directed):
            return {"type": "GraphEdges", "edges": [list(e) for e in edges], "directed": directed}
        case Image(data=data, width=width, height=height, color_model=model):
            return {
                "type": "Image",
                "width": width,
                "height": height,
                "color_model": model,
                "data": base64.b64encode(data).decode("ascii"),
            }
    raise TypeError(f"not an archetype: {archetype!r}")


def _decode(raw: Mapping[str, Any]) -> Archetype:
    kind = raw.get("type")
    if kind == "LineStrips2D":
        return LineStrips2D(raw["strips"])
    if kind == "Scalars":
        return Scalars(raw["value"])
    if kind == "GraphNodes":
        return GraphNodes(raw["node_ids"], raw.get("labels"), raw.get("colors"))
    if kind == "GraphEdges":
        return GraphEdges(raw["edges"], raw.get("directed", True))
    if kind == "Image":
        return Image(
            base64.b64decode(raw["data"]), raw["width"], raw["height"], raw.get("color_model", "RGB")
        )
    raise ValueError(f"unknown archetype type {kind!r}")


class Recording:
    """Collects archetypes logged at entity paths, stamped with the current timelines."""

    def __init__(self, application_id: str = "snlds") -> None:
        self.application_id = application_id
        self._time: dict[str, int] = {}
        self._entries: list[tuple[str, dict[str, int], Archetype]] = []

    def set_time_sequence(self, timeline: str, value: int) -> None:
        """Set the current position on ``timeline`` for subsequent logs."""
        self._time[timeline] = int(value)

    def log(self, entity_path: str, archetype: Archetype) -> None:
        """Record ``archetype`` at ``entity_path`` with the current time."""
        if not entity_path:
            raise ValueError("entity path must not be empty")
        if not isinstance(archetype, _ARCHETYPES):
            raise TypeError(f"cannot log {type(archetype).__name__}")
        self._entries.append((entity_path, dict(self._time), archetype))

    def entries_for(self, entity_path: str) -> list[tuple[dict[str, int], Archetype]]:
        """All ``(timepoint, archetype)`` pairs logged at ``entity_path``, in order."""
        return [(dict(t), a) for path, t, a in self._entries if path == entity_path]

    def save(self, path: str | Path) -> None:
        document = {
            "application_id": self.application_id,
            "entries": [
                {"entity_path": p, "time": t, "archetype": _encode(a)}
                for p, t, a in self._entries
            ],
        }
        Path(path).write_text(json.dumps(document), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> Recording:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        try:
            rec = cls(document["application_id"])
            entries: Iterable[Mapping[str, Any]] = document["entries"]
            for entry in entries:
                time = {str(k): int(v) for k, v in entry["time"].items()}
                rec._entries.append((entry["entity_path"], time, _decode(entry["archetype"])))
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed recording {path}: {exc}") from exc
        return rec