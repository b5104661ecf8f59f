import json
from pathlib import Path

import pytest

from temapper.config import DEFAULT_INSERT_SIZE, MapperConfig, load_config
from temapper.errors import ConfigurationError


def test_defaults_are_valid() -> None:
    cfg = MapperConfig().validate()
    assert cfg.window_size_junction == 5
    assert cfg.anchor_window == DEFAULT_INSERT_SIZE


def test_anchor_window_derivation() -> None:
    assert MapperConfig(insert_size=450).anchor_window == 450
    assert MapperConfig(insert_size=450, window_size_anchor=200).anchor_window == 200
    assert MapperConfig().with_insert_size(350).anchor_window == 350
    assert MapperConfig(insert_size=400).with_insert_size(350).insert_size == 400
    assert MapperConfig().with_insert_size(None).insert_size is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"window_size_junction": -1},
        {"window_size_anchor": -5},
        {"min_junction_clip": 0},
        {"insert_size": 0},
        {"workers": 0},
        {"max_tsd_length": "30"},
        {"min_te_length_fraction": 0},
        {"min_te_length_fraction": 2.0},
        {"max_te_length_fraction": True},
    ],
)
def test_invalid_values_rejected(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        MapperConfig(**kwargs).validate()


def test_unknown_option_rejected() -> None:
    with pytest.raises(ConfigurationError, match="window_size"):
        MapperConfig.from_mapping({"window_size": 3})


def test_load_config_file_and_overrides(tmp_path: Path) -> None:
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"window_size_junction": 8, "min_anchor_support": 5}), encoding="utf-8")
    cfg = load_config(path, {"min_anchor_support": 2, "workers": None})
    assert cfg.window_size_junction == 8
    assert cfg.min_anchor_support == 2
    assert cfg.workers == 1


def test_load_config_bad_json(tmp_path: Path) -> None:
    path = tmp_path / "cfg.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_to_dict_includes_effective_anchor_window() -> None:
    d = MapperConfig(insert_size=320).to_dict()
    assert d["anchor_window"] == 320
    assert d["window_size_anchor"] is None
    assert d["min_te_length_fraction"] == 0.1
    assert d["max_te_length_fraction"] == 1.5
