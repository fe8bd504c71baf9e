"""Dataset loading: manifests, SafeTensors files and sharded sequence datasets."""

from __future__ import annotations

import bisect
import itertools
import json
import math
import struct
import sys
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import numpy as np

MANIFEST_FILENAME = "metadata.json"
SEQUENCES_FILENAME = "sequences.safetensors"

_DTYPES: dict[str, str] = {
    "F16": "<f2",
    "F32": "<f4",
    "F64": "<f8",
    "I8": "i1",
    "I16": "<i2",
    "I32": "<i4",
    "I64": "<i8",
    "U8": "u1",
    "U16": "<u2",
    "U32": "<u4",
    "U64": "<u8",
    "BOOL": "?",
}

_REQUIRED_FIELDS = ("num_states", "dim_obs", "dim_latent", "seq_length", "num_samples")
_OPTIONAL_INT_FIELDS = ("schema_version", "seed", "num_samples_eval")


class DataError(Exception):
    """A dataset directory, manifest or tensor file could not be read."""


class _TensorNotFound(DataError):
    """The requested tensor is not present in a SafeTensors file."""


@dataclass
class Manifest:
    """Dataset description stored as ``metadata.json`` next to the tensors."""

    num_states: int
    dim_obs: int
    dim_latent: int
    seq_length: int
    num_samples: int
    schema_version: int = 0
    seed: int = 0
    num_samples_eval: int = 0
    data_type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Manifest:
        if not isinstance(raw, Mapping):
            raise DataError("manifest must be a JSON object")
        data = dict(raw)
        missing = [name for name in _REQUIRED_FIELDS if name not in data]
        if missing:
            raise DataError(f"manifest missing field(s): {', '.join(missing)}")
        values: dict[str, Any] = {}
        for name in (*_REQUIRED_FIELDS, *_OPTIONAL_INT_FIELDS):
            if name not in data:
                continue
            value = data.pop(name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise DataError(f"manifest field {name} must be a non-negative integer, got {value!r}")
            values[name] = value
        data_type = data.pop("data_type", None)
        if data_type is not None and not isinstance(data_type, str):
            raise DataError(f"manifest field data_type must be a string, got {data_type!r}")
        return cls(**values, data_type=data_type, extra=data)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            schema_version=self.schema_version,
            seed=self.seed,
            num_states=self.num_states,
            dim_obs=self.dim_obs,
            dim_latent=self.dim_latent,
            seq_length=self.seq_length,
            num_samples=self.num_samples,
            num_samples_eval=self.num_samples_eval,
        )
        if self.data_type is not None:
            out["data_type"] = self.data_type
        return out

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    def _compatible_with(self, other: Manifest) -> bool:
        return (
            self.seq_length == other.seq_length
            and self.dim_obs == other.dim_obs
            and self.num_states == other.num_states
        )


def load_manifest(path: str | Path) -> Manifest:
    """Read a manifest from a ``metadata.json`` file."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise DataError(f"read manifest {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise DataError(f"parse manifest {path}: {exc}") from exc
    return Manifest.from_dict(raw)


@dataclass(frozen=True)
class _TensorInfo:
    dtype: np.dtype
    shape: tuple[int, ...]
    offset: int  # absolute byte offset in the file
    nbytes: int


def _read_header(path: Path) -> tuple[dict[str, Any], int]:
    try:
        with path.open("rb") as fh:
            prefix = fh.read(8)
            if len(prefix) < 8:
                raise DataError(f"{path}: truncated safetensors header")
            (header_len,) = struct.unpack("<Q", prefix)
            raw = fh.read(header_len)
    except OSError as exc:
        raise DataError(f"open {path}: {exc}") from exc
    if len(raw) < header_len:
        raise DataError(f"{path}: truncated safetensors header")
    try:
        header = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DataError(f"parse safetensors header {path}: {exc}") from exc
    if not isinstance(header, dict):
        raise DataError(f"parse safetensors header {path}: not a JSON object")
    header.pop("__metadata__", None)
    return header, 8 + header_len


def _tensor_info(path: Path, name: str) -> _TensorInfo:
    header, data_start = _read_header(path)
    entry = header.get(name)
    if entry is None:
        raise _TensorNotFound(f"tensor {name} not found in {path}")
    try:
        dtype = np.dtype(_DTYPES[entry["dtype"]])
        shape = tuple(int(dim) for dim in entry["shape"])
        begin, end = (int(x) for x in entry["data_offsets"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DataError(f"{path}: malformed entry for tensor {name}: {exc}") from exc
    nbytes = math.prod(shape) * dtype.itemsize
    if end - begin != nbytes:
        raise DataError(
            f"{path}: tensor {name} spans {end - begin} bytes, shape {shape} needs {nbytes}"
        )
    return _TensorInfo(dtype=dtype, shape=shape, offset=data_start + begin, nbytes=nbytes)


def read_tensor(path: str | Path, name: str) -> np.ndarray:
    """Read one tensor from a SafeTensors file as a native-endian array."""
    path = Path(path)
    info = _tensor_info(path, name)
    try:
        with path.open("rb") as fh:
            fh.seek(info.offset)
            buf = fh.read(info.nbytes)
    except OSError as exc:
        raise DataError(f"read {path}: {exc}") from exc
    if len(buf) < info.nbytes:
        raise DataError(f"{path}: tensor {name} data is truncated")
    array = np.frombuffer(buf, dtype=info.dtype).reshape(info.shape)
    return array.astype(info.dtype.newbyteorder("="))


def _dtype_code(dtype: np.dtype) -> str:
    for code, spec in _DTYPES.items():
        if np.dtype(spec) == dtype.newbyteorder("<") or np.dtype(spec) == dtype:
            return code
    raise DataError(f"unsupported dtype {dtype}")


def save_safetensors(path: str | Path, tensors: Mapping[str, np.ndarray]) -> None:
    """Write named arrays to a SafeTensors file."""
    header: dict[str, Any] = {}
    blobs: list[bytes] = []
    offset = 0
    for name in sorted(tensors):
        array = np.asarray(tensors[name])
        code = _dtype_code(array.dtype)
        data = np.ascontiguousarray(array.astype(np.dtype(_DTYPES[code]), copy=False)).tobytes()
        header[name] = {
            "dtype": code,
            "shape": list(array.shape),
            "data_offsets": [offset, offset + len(data)],
        }
        blobs.append(data)
        offset += len(data)
    encoded = json.dumps(header, separators=(",", ":")).encode("utf-8")
    encoded += b" " * (-len(encoded) % 8)
    with Path(path).open("wb") as fh:
        fh.write(struct.pack("<Q", len(encoded)))
        fh.write(encoded)
        for blob in blobs:
            fh.write(blob)


def discover_shards(data_dir: str | Path) -> list[Path]:
    """Sorted ``shard_*`` subdirectories of ``data_dir``; empty for a plain dataset."""
    try:
        entries = list(Path(data_dir).iterdir())
    except OSError:
        return []
    return sorted(p for p in entries if p.name.startswith("shard_") and p.is_dir())


def _load_single_obs(directory: Path) -> tuple[np.ndarray, Manifest]:
    manifest = load_manifest(directory / MANIFEST_FILENAME)
    obs = read_tensor(directory / SEQUENCES_FILENAME, "obs_train")
    shape = (manifest.num_samples, manifest.seq_length, manifest.dim_obs)
    if obs.size != math.prod(shape):
        raise DataError(
            f"obs_train length {obs.size} != manifest expectation {math.prod(shape)} in {directory}"
        )
    return obs.astype(np.float32, copy=False).reshape(shape), manifest


def load_train_obs(data_dir: str | Path) -> tuple[np.ndarray, Manifest]:
    """Load ``obs_train`` as an ``[N, T, D]`` array, concatenating shards when present."""
    data_dir = Path(data_dir)
    shard_dirs = discover_shards(data_dir)
    if not shard_dirs:
        return _load_single_obs(data_dir)

    arrays: list[np.ndarray] = []
    combined: Manifest | None = None
    for directory in shard_dirs:
        obs, manifest = _load_single_obs(directory)
        if manifest.num_samples == 0:
            continue
        if combined is None:
            combined = manifest
        elif not combined._compatible_with(manifest):
            raise DataError(
                f"shard {directory} has incompatible manifest "
                "(seq_length/dim_obs/num_states mismatch)"
            )
        arrays.append(obs)
    if combined is None:
        raise DataError("no non-empty shards found")
    total = sum(len(a) for a in arrays)
    print(f"Loaded {len(shard_dirs)} shards: {total} total sequences", file=sys.stderr)
    return np.concatenate(arrays, axis=0), replace(combined, num_samples=total)


class SequenceDataset:
    """Memory-mapped sequences across one or more shards, served one ``[T, D]`` item at a time."""

    def __init__(self, shards: Sequence[np.ndarray], manifest: Manifest) -> None:
        self._shards = tuple(shards)
        self._cumulative = list(itertools.accumulate(len(s) for s in self._shards))
        self.manifest = manifest

    @classmethod
    def open(cls, data_dir: str | Path) -> SequenceDataset:
        """Open the training split (``obs_train``)."""
        return cls._open_split(Path(data_dir), "obs_train")

    @classmethod
    def open_val(cls, data_dir: str | Path) -> SequenceDataset | None:
        """Open the validation split (``obs_test``), or ``None`` when absent."""
        return cls._open_optional(Path(data_dir), "obs_test")

    @classmethod
    def open_eval(cls, data_dir: str | Path) -> SequenceDataset | None:
        """Open the held-out eval split (``obs_eval``), or ``None`` when absent."""
        return cls._open_optional(Path(data_dir), "obs_eval")

    @classmethod
    def _open_optional(cls, data_dir: Path, tensor_name: str) -> SequenceDataset | None:
        try:
            return cls._open_split(data_dir, tensor_name)
        except _TensorNotFound:
            return None

    @classmethod
    def _open_split(cls, data_dir: Path, tensor_name: str) -> SequenceDataset:
        dirs = discover_shards(data_dir) or [data_dir]
        shards: list[np.ndarray] = []
        combined: Manifest | None = None
        for directory in dirs:
            manifest = load_manifest(directory / MANIFEST_FILENAME)
            st_path = directory / SEQUENCES_FILENAME
            info = _tensor_info(st_path, tensor_name)
            if info.dtype != np.dtype("<f4"):
                raise DataError(f"tensor {tensor_name} in {st_path} is not float32")
            n = info.shape[0] if info.shape else 0
            item_shape = (manifest.seq_length, manifest.dim_obs)
            if math.prod(info.shape) != n * math.prod(item_shape):
                raise DataError(
                    f"tensor {tensor_name} in {st_path} has shape {info.shape}, "
                    f"expected sequences of {item_shape}"
                )
            if combined is None:
                combined = manifest
            elif not combined._compatible_with(manifest):
                raise DataError(f"shard {directory} has incompatible manifest")
            if n == 0:
                shards.append(np.empty((0, *item_shape), dtype=np.float32))
            else:
                shards.append(
                    np.memmap(st_path, dtype="<f4", mode="r", offset=info.offset, shape=(n, *item_shape))
                )
        if combined is None:
            raise DataError(f"no shards under {data_dir} contained a {tensor_name} tensor")
        total = sum(len(s) for s in shards)
        print(
            f"Opened {len(shards)} shard(s): {total} total sequences [{tensor_name}] (mmap)",
            file=sys.stderr,
        )
        return cls(shards, replace(combined, num_samples=total))

    def __len__(self) -> int:
        return self._cumulative[-1] if self._cumulative else 0

    def __getitem__(self, index: int) -> np.ndarray:
        length = len(self)
        if index < 0:
            index += length
        if not 0 <= index < length:
            raise IndexError(f"sequence index out of range for dataset of {length}")
        shard_idx = bisect.bisect_right(self._cumulative, index)
        local = index - (self._cumulative[shard_idx - 1] if shard_idx else 0)
        return np.array(self._shards[shard_idx][local], dtype=np.float32)

    def batches(self, batch_size: int, seed: int | None = None) -> Iterator[np.ndarray]:
        """Yield ``[n, T, D]`` batches; shuffled with ``seed`` when one is given."""
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        length = len(self)
        order = np.random.default_rng(seed).permutation(length) if seed is not None else np.arange(length)
        for start in range(0, length, batch_size):
            yield np.stack([self[int(i)] for i in order[start : start + batch_size]])