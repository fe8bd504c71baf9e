# snlds

Support code for switching non-linear dynamical system (SNLDS) experiments:

- `snlds.data` — reading datasets stored as `sequences.safetensors` plus
  `metadata.json`, including sharded datasets laid out as `shard_000/`,
  `shard_001/`, …; a small SafeTensors reader and writer;
- `snlds.config` — merging a TOML training configuration with command-line
  overrides;
- `snlds.snapshot` — the training-time hyperparameters (`train_config.json`)
  that downstream tools need to rebuild a model;
- `snlds.training_log` — minibatch logging cadence and printing of transition
  matrices;
- `snlds.recon` — mean squared and root mean squared reconstruction error;
- `snlds.colormap`, `snlds.recording`, `snlds.viz_log` — colour palettes, an
  in-memory recording of timestamped visual items saved as JSON, and helpers
  that log sequences, state strips, posterior heatmaps and Markov chains;
- `snlds-viz` — a command that records a dataset's ground truth.

Requires Python 3.11 or later and numpy.

## Installation

```
pip install .
```

With the test extra:

```
pip install ".[test]"
pytest
```

## Recording a dataset's ground truth

```
snlds-viz --input data/run1 --sequences 5 --split train --output snlds_gt.rrd
```

Options:

- `--input` (required): directory holding `sequences.safetensors` and
  `metadata.json`;
- `--sequences` (default 5): how many sequences to record, capped by the split
  size;
- `--split` (default `train`): `train`, `test` or `eval`;
- `--output` (default `snlds_gt.rrd`): where the recording is written.

The command logs the ground-truth transition matrix `q_true` once (as graph
nodes, directed edges for entries with magnitude at least `1e-3`, and a
viridis heatmap under `snlds/markov/q_true/weights`), then for each sequence
the discrete states, a coloured state strip, and — when the latents or
observations are two-dimensional — their trajectories. On success it prints
`Saved to "<path>"` and exits with 0; on a missing file, tensor, unknown split
or empty split it prints an error and exits with 1. The file written is the
JSON document of `snlds.recording.Recording.save`, whatever its extension.

## Library use

### Datasets

```python
from snlds.data import SequenceDataset, load_manifest, load_train_obs

obs, manifest = load_train_obs("data/run1")      # [N, T, D] float32, shards concatenated
train = SequenceDataset.open("data/run1")        # memory-mapped obs_train
val = SequenceDataset.open_val("data/run1")      # None when obs_test is absent
print(len(train), train[0].shape)

for batch in train.batches(32, seed=0):
    ...                                          # [batch, seq_length, obs_dim]
```

`read_tensor` and `save_safetensors` read and write single SafeTensors files;
`discover_shards` lists a dataset's `shard_*` directories. Problems with files
raise `snlds.data.DataError`.

### Training configuration

```python
from snlds.config import load_train_config_file, parse_args, resolve_train, resolve_encoder_kind

config_path, args = parse_args(
    ["--data-dir", "data/run1", "--output-dir", "runs/a", "--epochs", "20"]
)
file = load_train_config_file(config_path) if config_path else None
resolved = resolve_train(file, args)
print(resolved.epochs, resolved.batch_size, resolved.learning_rate)

kind = resolve_encoder_kind(resolved.encoder, resolved.res)
```

Values given on the command line win over the TOML file, which wins over the
built-in defaults. Unknown keys in the TOML file, a missing `data_dir` or
`output_dir`, and invalid encoder/`res` pairings raise
`snlds.config.ConfigError`. A CNN `res` must be a power of 2 and at least 16.

### Run snapshots

```python
from snlds.snapshot import TrainSnapshot

snapshot = TrainSnapshot.load_for_checkpoint("runs/a/checkpoint_0009.mpk")
print(snapshot.hidden_dim, snapshot.kind)
```

Snapshots with a `schema_version` newer than the package supports are
rejected with `snlds.snapshot.SnapshotError`.

### Logging helpers

```python
from snlds.training_log import log_learned_transition_matrix, should_log_minibatch

should_log_minibatch(10, 0, 25)                  # True: batch 0, and every 10th, and the last
log_learned_transition_matrix("", 3, [[2.0, 0.0], [0.0, 2.0]], 1.0)
```

### Colours and recordings

```python
import numpy as np
from snlds.colormap import state_color, viridis_rgb
from snlds.recording import Recording
from snlds.viz_log import log_state_strip, log_transition_matrix

rec = Recording()
q = np.array([[0.7, 0.2, 0.1], [0.1, 0.8, 0.1], [0.0, 0.0, 1.0]], dtype=np.float32)
log_transition_matrix(rec, "snlds/markov/q_true", q)
log_state_strip(rec, "snlds/state/strip_true", [0, 1, 1, 2])
rec.save("q.json")

again = Recording.load("q.json")
print(again.entries_for("snlds/markov/q_true/weights"))
```

## What this package does not do

- It does not train models. There is no training loop, optimiser, model
  definition, checkpoint writing or warm start; `snlds.config` resolves
  settings and `snlds.snapshot` reads and writes `train_config.json`, but no
  command runs training.
- It does not generate datasets; it reads ones that already exist.
- `snlds-viz` does not render image frames of latent trajectories and does not
  open a live viewer. `snlds.viz_log.log_render_frames` logs frames you
  already have.