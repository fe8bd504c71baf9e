from pathlib import Path

import pytest

from snlds.config import (
    ConfigError,
    CouplingType,
    EncoderChoice,
    NpcaRotation,
    TrainArgs,
    TrainConfigFile,
    TrainMode,
    load_train_config_file,
    parse_args,
    parse_train_config_toml,
    resolve_encoder_kind,
    resolve_train,
    validate_cnn_res,
)
from snlds.snapshot import EncoderKind


def minimal_file(**overrides):
    values = dict(data_dir=Path("d"), output_dir=Path("o"))
    values.update(overrides)
    return TrainConfigFile(**values)


def test_toml_overridden_by_cli_numbers():
    file = minimal_file(epochs=10, batch_size=7, learning_rate=1e-2)
    args = TrainArgs(data_dir=Path("x"), output_dir=Path("y"), epochs=99, batch_size=None)
    r = resolve_train(file, args)
    assert r.epochs == 99
    assert r.batch_size == 7
    assert abs(r.learning_rate - 1e-2) < 1e-9
    assert r.data_dir == Path("x")


def test_weight_decay_from_toml():
    file = minimal_file(weight_decay=0.02)
    r = resolve_train(file, TrainArgs(data_dir=Path("d"), output_dir=Path("o")))
    assert abs(r.weight_decay - 0.02) < 1e-6

    r2 = resolve_train(
        file, TrainArgs(data_dir=Path("d"), output_dir=Path("o"), weight_decay=0.0)
    )
    assert r2.weight_decay == 0.0


def test_transition_log_every_batches_from_toml():
    file = minimal_file(transition_log_every_batches=50)
    r = resolve_train(file, TrainArgs(data_dir=Path("d"), output_dir=Path("o")))
    assert r.transition_log_every_batches == 50


def test_transition_log_every_batches_cli_overrides_toml():
    file = minimal_file(transition_log_every_batches=50)
    args = TrainArgs(data_dir=Path("d"), output_dir=Path("o"), transition_log_every_batches=3)
    r = resolve_train(file, args)
    assert r.transition_log_every_batches == 3


def test_paths_required_without_toml():
    with pytest.raises(ConfigError, match="data_dir"):
        resolve_train(None, TrainArgs())


def test_output_dir_required():
    with pytest.raises(ConfigError, match="output_dir"):
        resolve_train(None, TrainArgs(data_dir=Path("d")))


def test_defaults_when_nothing_set():
    r = resolve_train(None, TrainArgs(data_dir=Path("d"), output_dir=Path("o")))
    assert r.mode is TrainMode.VARIATIONAL
    assert r.epochs == 100
    assert r.batch_size == 32
    assert r.learning_rate == pytest.approx(3e-4)
    assert r.checkpoint_every == 10
    assert r.log_every_batch == 1
    assert r.weight_decay == pytest.approx(1e-4)
    assert r.hidden_dim == 64
    assert r.obs_noise_var == pytest.approx(5e-4)
    assert r.msm_restarts == 3
    assert r.msm_epochs == 30
    assert r.msm_lr == pytest.approx(7e-3)
    assert r.msm_hidden_dim == 16
    assert r.encoder is EncoderChoice.FACTORED
    assert r.res is None
    assert r.w_msm == pytest.approx(3.0)
    assert r.npca_glow_coupling is CouplingType.AFFINE
    assert r.npca_rotation is NpcaRotation.SVD
    assert r.npca_householder_reflectors == 32


def test_flow_mode_from_file_or_flag():
    file = minimal_file(mode=TrainMode.FLOW_SNLDS)
    assert resolve_train(file, TrainArgs()).mode is TrainMode.FLOW_SNLDS
    args = TrainArgs(data_dir=Path("d"), output_dir=Path("o"), flow_snlds=True)
    assert resolve_train(None, args).mode is TrainMode.FLOW_SNLDS


def test_msm_init_from_file():
    file = minimal_file(msm_init=True)
    assert resolve_train(file, TrainArgs()).msm_init is True


def test_parse_toml_values():
    raw = """
data_dir = "data/train"
output_dir = "runs/a"
mode = "flow_snlds"
epochs = 100
lr = 0.001
beta = 1
encoder = "cnn"
res = 32
npca_glow_coupling = "additive"
npca_rotation = "householder"
"""
    f = parse_train_config_toml(raw)
    assert f.data_dir == Path("data/train")
    assert f.epochs == 100
    assert f.learning_rate == pytest.approx(0.001)
    assert f.beta == 1.0
    assert f.mode is TrainMode.FLOW_SNLDS
    assert f.encoder is EncoderChoice.GEN
    assert f.res == 32
    assert f.npca_glow_coupling is CouplingType.ADDITIVE
    assert f.npca_rotation is NpcaRotation.HOUSEHOLDER


def test_parse_toml_encoder_mlp_maps_to_factored():
    assert parse_train_config_toml('encoder = "mlp"').encoder is EncoderChoice.FACTORED


def test_parse_toml_rejects_unknown_key():
    with pytest.raises(ConfigError, match="bogus"):
        parse_train_config_toml("bogus = 1")


def test_parse_toml_rejects_bad_type():
    with pytest.raises(ConfigError, match="epochs"):
        parse_train_config_toml('epochs = "ten"')


def test_parse_toml_rejects_bad_variant():
    with pytest.raises(ConfigError, match="mode"):
        parse_train_config_toml('mode = "other"')


def test_parse_toml_rejects_malformed_syntax():
    with pytest.raises(ConfigError, match="TOML"):
        parse_train_config_toml("epochs = = 3")


def test_load_train_config_file(tmp_path):
    path = tmp_path / "train.toml"
    path.write_text('data_dir = "d"\nepochs = 5\n', encoding="utf-8")
    f = load_train_config_file(path)
    assert f.data_dir == Path("d")
    assert f.epochs == 5


def test_load_train_config_file_missing(tmp_path):
    with pytest.raises(ConfigError, match="read training config"):
        load_train_config_file(tmp_path / "absent.toml")


def test_resolve_encoder_kind_rejects_non_power_of_two_res():
    with pytest.raises(ConfigError, match="power of 2"):
        resolve_encoder_kind(EncoderChoice.GEN, 24)


def test_resolve_encoder_kind_rejects_too_small_res():
    with pytest.raises(ConfigError, match=">= 16"):
        resolve_encoder_kind(EncoderChoice.GEN, 8)


def test_resolve_encoder_kind_rejects_mlp_with_res():
    with pytest.raises(ConfigError, match="--res"):
        resolve_encoder_kind(EncoderChoice.FACTORED, 32)


def test_resolve_encoder_kind_rejects_cnn_without_res():
    with pytest.raises(ConfigError, match="--res"):
        resolve_encoder_kind(EncoderChoice.GEN, None)


def test_resolve_encoder_kind_accepts_valid_pairings():
    assert resolve_encoder_kind(EncoderChoice.FACTORED, None) == EncoderKind.mlp()
    assert resolve_encoder_kind(EncoderChoice.GEN, 16) == EncoderKind.cnn(16)


def test_validate_cnn_res_accepts_power_of_two():
    assert validate_cnn_res(64) == 64


def test_parse_args_flags():
    config, args = parse_args(
        [
            "--config", "c.toml",
            "--data-dir", "d",
            "--lr", "0.01",
            "--log-every", "4",
            "--transition-log-every", "2",
            "--encoder", "gen",
            "--res", "16",
            "--flow-snlds",
            "--npca-rotation", "householder",
        ]
    )
    assert config == Path("c.toml")
    assert args.data_dir == Path("d")
    assert args.learning_rate == pytest.approx(0.01)
    assert args.log_every_batch == 4
    assert args.transition_log_every_batches == 2
    assert args.encoder is EncoderChoice.GEN
    assert args.res == 16
    assert args.flow_snlds is True
    assert args.npca_rotation is NpcaRotation.HOUSEHOLDER
    assert args.epochs is None


def test_parse_args_defaults():
    config, args = parse_args([])
    assert config is None
    assert args == TrainArgs()


def test_parse_args_rejects_bad_encoder():
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--encoder", "transformer"])
    assert excinfo.value.code == 2


def test_cli_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--help"])
    assert excinfo.value.code == 0
    assert "--data-dir" in capsys.readouterr().out