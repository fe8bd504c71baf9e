"""Training-time hyperparameters persisted next to checkpoints.

The snapshot is written to ``<output_dir>/train_config.json`` once at the start of a
training run and stays valid for every checkpoint in that directory.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Observation noise variance used in the reconstruction term of the ELBO.
DEFAULT_OBS_NOISE_VAR = 5e-4

# File written to an output directory so checkpoints carry their training context.
TRAIN_SNAPSHOT_FILENAME = "train_config.json"

TRAIN_SNAPSHOT_SCHEMA_VERSION = 1


class SnapshotError(Exception):
    """A training snapshot could not be read, parsed or written."""


def _require(raw: Mapping[str, Any], name: str) -> Any:
    if name not in raw:
        raise SnapshotError(f"missing field `{name}`")
    return raw[name]


def _as_uint(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SnapshotError(f"field `{name}` must be a non-negative integer, got {value!r}")
    return value


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotError(f"field `{name}` must be a number, got {value!r}")
    return float(value)


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise SnapshotError(f"field `{name}` must be a string, got {value!r}")
    return value


@dataclass(frozen=True)
class EncoderKind:
    """Encoder/decoder family: an MLP, or a CNN over ``3 * res * res`` RGB images."""

    res: int | None = None

    @classmethod
    def mlp(cls) -> EncoderKind:
        return cls()

    @classmethod
    def cnn(cls, res: int) -> EncoderKind:
        return cls(res=_as_uint(res, "res"))

    @property
    def is_cnn(self) -> bool:
        return self.res is not None

    def to_json(self) -> Any:
        """JSON form: ``"Mlp"`` or ``{"Cnn": {"res": n}}``."""
        if self.res is None:
            return "Mlp"
        return {"Cnn": {"res": self.res}}

    @classmethod
    def from_json(cls, value: Any) -> EncoderKind:
        if value == "Mlp":
            return cls.mlp()
        if isinstance(value, Mapping) and len(value) == 1:
            ((tag, body),) = value.items()
            if tag == "Mlp" and body is None:
                return cls.mlp()
            if tag == "Cnn" and isinstance(body, Mapping):
                return cls.cnn(_require(body, "res"))
        raise SnapshotError(f"unknown encoder kind {value!r}")


@dataclass
class FlowSnldsSnapshotMeta:
    """Extra fields recorded for joint flow + switching-prior runs."""

    w_msm: float
    w_npca: float
    res: int
    glow_levels: int
    glow_steps: int
    glow_hidden_features: int
    total_latent_dim: int
    glow_coupling: str = "affine"
    npca_rotation: str = "svd"
    npca_householder_reflectors: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "w_msm": self.w_msm,
            "w_npca": self.w_npca,
            "res": self.res,
            "glow_levels": self.glow_levels,
            "glow_steps": self.glow_steps,
            "glow_hidden_features": self.glow_hidden_features,
            "glow_coupling": self.glow_coupling,
            "total_latent_dim": self.total_latent_dim,
            "npca_rotation": self.npca_rotation,
            "npca_householder_reflectors": self.npca_householder_reflectors,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> FlowSnldsSnapshotMeta:
        if not isinstance(raw, Mapping):
            raise SnapshotError("flow_snlds must be a JSON object")
        reflectors = raw.get("npca_householder_reflectors")
        return cls(
            w_msm=_as_float(_require(raw, "w_msm"), "w_msm"),
            w_npca=_as_float(_require(raw, "w_npca"), "w_npca"),
            res=_as_uint(_require(raw, "res"), "res"),
            glow_levels=_as_uint(_require(raw, "glow_levels"), "glow_levels"),
            glow_steps=_as_uint(_require(raw, "glow_steps"), "glow_steps"),
            glow_hidden_features=_as_uint(
                _require(raw, "glow_hidden_features"), "glow_hidden_features"
            ),
            total_latent_dim=_as_uint(_require(raw, "total_latent_dim"), "total_latent_dim"),
            glow_coupling=_as_str(raw.get("glow_coupling", "affine"), "glow_coupling"),
            npca_rotation=_as_str(raw.get("npca_rotation", "svd"), "npca_rotation"),
            npca_householder_reflectors=(
                None
                if reflectors is None
                else _as_uint(reflectors, "npca_householder_reflectors")
            ),
        )


@dataclass
class TrainSnapshot:
    """Hyperparameters that downstream tools need to rebuild the model and its ELBO."""

    schema_version: int
    hidden_dim: int
    beta: float
    temperature: float
    obs_noise_var: float
    kind: EncoderKind
    flow_snlds: FlowSnldsSnapshotMeta | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "hidden_dim": self.hidden_dim,
            "beta": self.beta,
            "temperature": self.temperature,
            "obs_noise_var": self.obs_noise_var,
            "kind": self.kind.to_json(),
            "flow_snlds": None if self.flow_snlds is None else self.flow_snlds.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> TrainSnapshot:
        if not isinstance(raw, Mapping):
            raise SnapshotError("snapshot must be a JSON object")
        flow = raw.get("flow_snlds")
        return cls(
            schema_version=_as_uint(_require(raw, "schema_version"), "schema_version"),
            hidden_dim=_as_uint(_require(raw, "hidden_dim"), "hidden_dim"),
            beta=_as_float(_require(raw, "beta"), "beta"),
            temperature=_as_float(_require(raw, "temperature"), "temperature"),
            obs_noise_var=_as_float(_require(raw, "obs_noise_var"), "obs_noise_var"),
            kind=EncoderKind.from_json(_require(raw, "kind")),
            flow_snlds=None if flow is None else FlowSnldsSnapshotMeta.from_dict(flow),
        )

    def save(self, output_dir: str | Path) -> Path:
        """Write ``<output_dir>/train_config.json`` (pretty-printed) and return its path."""
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            path = output_dir / TRAIN_SNAPSHOT_FILENAME
            path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            raise SnapshotError(f"write snapshot in {output_dir}: {exc}") from exc
        return path

    @classmethod
    def load_from_dir(cls, directory: str | Path) -> TrainSnapshot:
        """Read ``<directory>/train_config.json``."""
        path = Path(directory) / TRAIN_SNAPSHOT_FILENAME
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SnapshotError(f"read snapshot {path}: {exc}") from exc
        try:
            snapshot = cls.from_dict(json.loads(text))
        except json.JSONDecodeError as exc:
            raise SnapshotError(f"parse snapshot {path}: {exc}") from exc
        except SnapshotError as exc:
            raise SnapshotError(f"parse snapshot {path}: {exc}") from exc
        if snapshot.schema_version > TRAIN_SNAPSHOT_SCHEMA_VERSION:
            raise SnapshotError(
                f"snapshot {path} has schema_version {snapshot.schema_version} "
                f"but loader expects ..={TRAIN_SNAPSHOT_SCHEMA_VERSION}"
            )
        return snapshot

    @classmethod
    def load_for_checkpoint(cls, checkpoint_path: str | Path) -> TrainSnapshot:
        """Read the snapshot stored in the same directory as ``checkpoint_path``."""
        checkpoint_path = Path(checkpoint_path)
        parent = checkpoint_path.parent
        if parent == checkpoint_path:
            raise SnapshotError(f"checkpoint path {checkpoint_path} has no parent directory")
        return cls.load_from_dir(parent)