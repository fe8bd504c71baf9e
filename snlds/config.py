"""Training configuration: optional TOML defaults merged with command-line overrides.

Load a file with :func:`load_train_config_file`, parse flags with :func:`parse_args`,
then merge both with :func:`resolve_train`. A flag that is given wins over the file;
a value missing from both falls back to a built-in default.
"""

from __future__ import annotations

import argparse
import tomllib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any

from .snapshot import DEFAULT_OBS_NOISE_VAR, EncoderKind


class ConfigError(Exception):
    """A training configuration is invalid or could not be read."""


class TrainMode(Enum):
    VARIATIONAL = "variational"
    FLOW_SNLDS = "flow_snlds"


class EncoderChoice(Enum):
    """Encoder family: ``factored`` (MLP) or ``gen`` (CNN over RGB images)."""

    FACTORED = "factored"
    GEN = "gen"


class CouplingType(Enum):
    AFFINE = "affine"
    ADDITIVE = "additive"


class NpcaRotation(Enum):
    SVD = "svd"
    HOUSEHOLDER = "householder"


_FILE_ENCODER_NAMES = {
    "mlp": EncoderChoice.FACTORED,
    "factored": EncoderChoice.FACTORED,
    "cnn": EncoderChoice.GEN,
    "gen": EncoderChoice.GEN,
}


def validate_cnn_res(res: int) -> int:
    """Check that a CNN image side is a power of 2 and at least 16; return it."""
    if isinstance(res, bool) or not isinstance(res, int):
        raise ConfigError(f"res must be an integer, got {res!r}")
    if res < 16:
        raise ConfigError(f"res must be >= 16 (got {res})")
    if res & (res - 1):
        raise ConfigError(f"res must be a power of 2 (got {res})")
    return res


@dataclass
class TrainConfigFile:
    """Flat TOML table of training defaults; every value is optional."""

    data_dir: Path | None = None
    output_dir: Path | None = None
    mode: TrainMode = TrainMode.VARIATIONAL
    epochs: int | None = None
    batch_size: int | None = None
    learning_rate: float | None = None
    beta: float | None = None
    temperature: float | None = None
    grad_clip: float | None = None
    checkpoint_every: int | None = None
    log_every_batch: int | None = None
    transition_log_every_batches: int | None = None
    weight_decay: float | None = None
    hidden_dim: int | None = None
    obs_noise_var: float | None = None
    seed: int | None = None
    resume: Path | None = None
    msm_init: bool = False
    msm_restarts: int | None = None
    msm_epochs: int | None = None
    msm_batch_size: int | None = None
    msm_lr: float | None = None
    msm_hidden_dim: int | None = None
    encoder: EncoderChoice = EncoderChoice.FACTORED
    res: int | None = None
    w_msm: float | None = None
    w_npca: float | None = None
    npca_glow_levels: int | None = None
    npca_glow_steps: int | None = None
    npca_glow_hidden: int | None = None
    npca_glow_coupling: CouplingType | None = None
    npca_rotation: NpcaRotation = NpcaRotation.SVD
    npca_householder_reflectors: int | None = None


@dataclass
class TrainArgs:
    """Command-line values; ``None`` (or ``False``) means the flag was not given."""

    data_dir: Path | None = None
    output_dir: Path | None = None
    epochs: int | None = None
    batch_size: int | None = None
    learning_rate: float | None = None
    beta: float | None = None
    temperature: float | None = None
    grad_clip: float | None = None
    checkpoint_every: int | None = None
    log_every_batch: int | None = None
    transition_log_every_batches: int | None = None
    weight_decay: float | None = None
    hidden_dim: int | None = None
    obs_noise_var: float | None = None
    seed: int | None = None
    resume: Path | None = None
    msm_init: bool = False
    msm_restarts: int | None = None
    msm_epochs: int | None = None
    msm_batch_size: int | None = None
    msm_lr: float | None = None
    msm_hidden_dim: int | None = None
    encoder: EncoderChoice | None = None
    res: int | None = None
    flow_snlds: bool = False
    w_msm: float | None = None
    w_npca: float | None = None
    npca_glow_levels: int | None = None
    npca_glow_steps: int | None = None
    npca_glow_hidden: int | None = None
    npca_glow_coupling: CouplingType | None = None
    npca_rotation: NpcaRotation | None = None
    npca_householder_reflectors: int | None = None


@dataclass
class ResolvedTrain:
    """Fully merged training settings."""

    data_dir: Path
    output_dir: Path
    mode: TrainMode
    epochs: int
    batch_size: int
    learning_rate: float
    beta: float
    temperature: float
    grad_clip: float
    checkpoint_every: int
    log_every_batch: int
    weight_decay: float
    transition_log_every_batches: int
    hidden_dim: int
    obs_noise_var: float
    seed: int
    resume: Path | None
    msm_init: bool
    msm_restarts: int
    msm_epochs: int
    msm_batch_size: int
    msm_lr: float
    msm_hidden_dim: int
    encoder: EncoderChoice
    res: int | None
    w_msm: float
    w_npca: float
    npca_glow_levels: int
    npca_glow_steps: int
    npca_glow_hidden: int
    npca_glow_coupling: CouplingType
    npca_rotation: NpcaRotation
    npca_householder_reflectors: int


# --------------------------------------------------------------------------
# TOML layer
# --------------------------------------------------------------------------

_Converter = Callable[[str, Any], Any]


def _to_uint(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"`{key}` must be a non-negative integer, got {value!r}")
    return value


def _to_float(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"`{key}` must be a number, got {value!r}")
    return float(value)


def _to_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"`{key}` must be a boolean, got {value!r}")
    return value


def _to_path(key: str, value: Any) -> Path:
    if not isinstance(value, str):
        raise ConfigError(f"`{key}` must be a string path, got {value!r}")
    return Path(value)


def _lookup(names: Mapping[str, Any]) -> _Converter:
    def convert(key: str, value: Any) -> Any:
        if not isinstance(value, str) or value not in names:
            expected = ", ".join(f'"{name}"' for name in names)
            raise ConfigError(f"`{key}`: unknown variant {value!r}, expected one of {expected}")
        return names[value]

    return convert


def _enum_names(enum_cls: type[Enum]) -> dict[str, Enum]:
    return {member.value: member for member in enum_cls}


# TOML key -> (attribute, converter)
_FILE_KEYS: dict[str, tuple[str, _Converter]] = {
    "data_dir": ("data_dir", _to_path),
    "output_dir": ("output_dir", _to_path),
    "mode": ("mode", _lookup(_enum_names(TrainMode))),
    "epochs": ("epochs", _to_uint),
    "batch_size": ("batch_size", _to_uint),
    "lr": ("learning_rate", _to_float),
    "beta": ("beta", _to_float),
    "temperature": ("temperature", _to_float),
    "grad_clip": ("grad_clip", _to_float),
    "checkpoint_every": ("checkpoint_every", _to_uint),
    "log_every_batch": ("log_every_batch", _to_uint),
    "transition_log_every_batches": ("transition_log_every_batches", _to_uint),
    "weight_decay": ("weight_decay", _to_float),
    "hidden_dim": ("hidden_dim", _to_uint),
    "obs_noise_var": ("obs_noise_var", _to_float),
    "seed": ("seed", _to_uint),
    "resume": ("resume", _to_path),
    "msm_init": ("msm_init", _to_bool),
    "msm_restarts": ("msm_restarts", _to_uint),
    "msm_epochs": ("msm_epochs", _to_uint),
    "msm_batch_size": ("msm_batch_size", _to_uint),
    "msm_lr": ("msm_lr", _to_float),
    "msm_hidden_dim": ("msm_hidden_dim", _to_uint),
    "encoder": ("encoder", _lookup(_FILE_ENCODER_NAMES)),
    "res": ("res", _to_uint),
    "w_msm": ("w_msm", _to_float),
    "w_npca": ("w_npca", _to_float),
    "npca_glow_levels": ("npca_glow_levels", _to_uint),
    "npca_glow_steps": ("npca_glow_steps", _to_uint),
    "npca_glow_hidden": ("npca_glow_hidden", _to_uint),
    "npca_glow_coupling": ("npca_glow_coupling", _lookup(_enum_names(CouplingType))),
    "npca_rotation": ("npca_rotation", _lookup(_enum_names(NpcaRotation))),
    "npca_householder_reflectors": ("npca_householder_reflectors", _to_uint),
}


def _file_from_mapping(table: Mapping[str, Any]) -> TrainConfigFile:
    unknown = sorted(set(table) - set(_FILE_KEYS))
    if unknown:
        raise ConfigError(f"unknown field(s): {', '.join(f'`{k}`' for k in unknown)}")
    values = {
        attr: convert(key, table[key])
        for key, (attr, convert) in _FILE_KEYS.items()
        if key in table
    }
    return TrainConfigFile(**values)


def parse_train_config_toml(raw: str) -> TrainConfigFile:
    """Parse TOML text into a :class:`TrainConfigFile`; unknown keys are rejected."""
    try:
        table = tomllib.loads(raw)
        return _file_from_mapping(table)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"parse training config TOML: {exc}") from exc
    except ConfigError as exc:
        raise ConfigError(f"parse training config TOML: {exc}") from exc


def load_train_config_file(path: str | Path) -> TrainConfigFile:
    """Read and parse a training config TOML file."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"read training config TOML {path}: {exc}") from exc
    try:
        return parse_train_config_toml(raw)
    except ConfigError as exc:
        raise ConfigError(f"in {path}: {exc}") from exc


# --------------------------------------------------------------------------
# Merging
# --------------------------------------------------------------------------


def _pick(cli: Any, file_value: Any, hard: Any) -> Any:
    if cli is not None:
        return cli
    if file_value is not None:
        return file_value
    return hard


def resolve_train(file: TrainConfigFile | None, args: TrainArgs) -> ResolvedTrain:
    """Merge the TOML layer with CLI values: CLI first, then file, then defaults."""
    layer = file if file is not None else TrainConfigFile()

    data_dir = _pick(args.data_dir, layer.data_dir, None)
    if data_dir is None:
        raise ConfigError("data_dir: set `data_dir` in the TOML or pass `--data-dir`")
    output_dir = _pick(args.output_dir, layer.output_dir, None)
    if output_dir is None:
        raise ConfigError("output_dir: set `output_dir` in the TOML or pass `--output-dir`")

    want_flow = args.flow_snlds or layer.mode is TrainMode.FLOW_SNLDS

    return ResolvedTrain(
        data_dir=Path(data_dir),
        output_dir=Path(output_dir),
        mode=TrainMode.FLOW_SNLDS if want_flow else TrainMode.VARIATIONAL,
        epochs=_pick(args.epochs, layer.epochs, 100),
        batch_size=_pick(args.batch_size, layer.batch_size, 32),
        learning_rate=_pick(args.learning_rate, layer.learning_rate, 3e-4),
        beta=_pick(args.beta, layer.beta, 1.0),
        temperature=_pick(args.temperature, layer.temperature, 1.0),
        grad_clip=_pick(args.grad_clip, layer.grad_clip, 1.0),
        checkpoint_every=_pick(args.checkpoint_every, layer.checkpoint_every, 10),
        log_every_batch=_pick(args.log_every_batch, layer.log_every_batch, 1),
        weight_decay=_pick(args.weight_decay, layer.weight_decay, 1e-4),
        transition_log_every_batches=_pick(
            args.transition_log_every_batches, layer.transition_log_every_batches, 0
        ),
        hidden_dim=_pick(args.hidden_dim, layer.hidden_dim, 64),
        obs_noise_var=_pick(args.obs_noise_var, layer.obs_noise_var, DEFAULT_OBS_NOISE_VAR),
        seed=_pick(args.seed, layer.seed, 0),
        resume=_pick(args.resume, layer.resume, None),
        msm_init=args.msm_init or layer.msm_init,
        msm_restarts=_pick(args.msm_restarts, layer.msm_restarts, 3),
        msm_epochs=_pick(args.msm_epochs, layer.msm_epochs, 30),
        msm_batch_size=_pick(args.msm_batch_size, layer.msm_batch_size, 32),
        msm_lr=_pick(args.msm_lr, layer.msm_lr, 7e-3),
        msm_hidden_dim=_pick(args.msm_hidden_dim, layer.msm_hidden_dim, 16),
        encoder=_pick(args.encoder, layer.encoder, EncoderChoice.FACTORED),
        res=_pick(args.res, layer.res, None),
        w_msm=_pick(args.w_msm, layer.w_msm, 3.0),
        w_npca=_pick(args.w_npca, layer.w_npca, 1.0),
        npca_glow_levels=_pick(args.npca_glow_levels, layer.npca_glow_levels, 2),
        npca_glow_steps=_pick(args.npca_glow_steps, layer.npca_glow_steps, 2),
        npca_glow_hidden=_pick(args.npca_glow_hidden, layer.npca_glow_hidden, 16),
        npca_glow_coupling=_pick(
            args.npca_glow_coupling, layer.npca_glow_coupling, CouplingType.AFFINE
        ),
        npca_rotation=_pick(args.npca_rotation, layer.npca_rotation, NpcaRotation.SVD),
        npca_householder_reflectors=_pick(
            args.npca_householder_reflectors, layer.npca_householder_reflectors, 32
        ),
    )


def resolve_encoder_kind(encoder: EncoderChoice, res: int | None) -> EncoderKind:
    """Turn an encoder choice plus optional image side into an :class:`EncoderKind`."""
    if encoder is EncoderChoice.FACTORED:
        if res is not None:
            raise ConfigError(
                f"--res {res} given with --encoder mlp; --res is only valid for cnn"
            )
        return EncoderKind.mlp()
    if res is None:
        raise ConfigError("--encoder cnn requires --res <usize> (e.g. 16, 32)")
    return EncoderKind.cnn(validate_cnn_res(res))


# --------------------------------------------------------------------------
# Command line
# --------------------------------------------------------------------------


def _uint_arg(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}")
    return value


def _enum_arg(enum_cls: type[Enum]) -> Callable[[str], Enum]:
    def convert(text: str) -> Enum:
        try:
            return enum_cls(text)
        except ValueError:
            choices = ", ".join(member.value for member in enum_cls)
            raise argparse.ArgumentTypeError(
                f"invalid choice: {text!r} (choose from {choices})"
            ) from None

    return convert


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the training command."""
    parser = argparse.ArgumentParser(
        prog="snlds-train",
        description="Train VariationalSnlds, FlowSNLDS, or Neural PCA on SafeTensors datasets.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML file with defaults; every flag below overrides the file when given.",
    )
    add = parser.add_argument
    add("--data-dir", type=Path)
    add("--output-dir", type=Path)
    add("--epochs", type=_uint_arg)
    add("--batch-size", type=_uint_arg)
    add("--lr", dest="learning_rate", type=float)
    add("--beta", type=float)
    add("--temperature", type=float)
    add("--grad-clip", type=float)
    add("--checkpoint-every", type=_uint_arg)
    add(
        "--log-every",
        dest="log_every_batch",
        type=_uint_arg,
        help="Log every N minibatches per epoch (0 = off; default 1).",
    )
    add(
        "--transition-log-every",
        dest="transition_log_every_batches",
        type=_uint_arg,
        help="Print learned Markov Q every N minibatches (0 = epoch end only).",
    )
    add(
        "--weight-decay",
        type=float,
        help="AdamW weight decay for FlowSNLDS / Neural PCA (0 = off; default 1e-4).",
    )
    add("--hidden-dim", type=_uint_arg)
    add("--obs-noise-var", type=float)
    add("--seed", type=_uint_arg)
    add("--resume", type=Path)
    add("--msm-init", action="store_true")
    add("--msm-restarts", type=_uint_arg)
    add("--msm-epochs", type=_uint_arg)
    add("--msm-batch-size", type=_uint_arg)
    add("--msm-lr", type=float)
    add("--msm-hidden-dim", type=_uint_arg)
    add("--encoder", type=_enum_arg(EncoderChoice), metavar="{factored,gen}")
    add("--res", type=_uint_arg)
    add("--flow-snlds", action="store_true")
    add("--w-msm", type=float)
    add("--w-npca", type=float)
    add("--npca-glow-levels", type=_uint_arg)
    add("--npca-glow-steps", type=_uint_arg)
    add("--npca-glow-hidden", type=_uint_arg)
    add("--npca-glow-coupling", type=_enum_arg(CouplingType), metavar="{affine,additive}")
    add("--npca-rotation", type=_enum_arg(NpcaRotation), metavar="{svd,householder}")
    add("--npca-householder-reflectors", type=_uint_arg)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> tuple[Path | None, TrainArgs]:
    """Parse command-line flags into the config file path and :class:`TrainArgs`."""
    namespace = build_parser().parse_args(argv)
    values = vars(namespace)
    config_path = values.pop("config")
    known = {f.name for f in fields(TrainArgs)}
    return config_path, TrainArgs(**{k: v for k, v in values.items() if k in known})