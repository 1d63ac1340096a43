from __future__ import annotations

import json
from pathlib import Path

from git_fuzz import BranchPickerApp, FuzzConfig, setup


def test_defaults():
    config = FuzzConfig()
    assert config.open_keymap == "ctrl+o"
    assert config.pull_keymap == "ctrl+r"
    assert config.push_keymap == "ctrl+y"
    assert config.fetch_keymap == "ctrl+t"
    assert config.remote == "origin"
    assert config.include_remote is False
    assert config.max_results == 10


def test_missing_file_gives_defaults(tmp_path: Path):
    assert FuzzConfig.load(tmp_path / "nope.json") == FuzzConfig()


def test_save_then_load(tmp_path: Path):
    path = tmp_path / "nested" / "config.json"
    FuzzConfig(push_keymap="f9", include_remote=True).save(path)
    loaded = FuzzConfig.load(path)
    assert loaded.push_keymap == "f9"
    assert loaded.include_remote is True
    assert loaded.pull_keymap == "ctrl+r"


def test_partial_file_and_unknown_keys(tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"fetch_keymap": "f5", "theme": "dark"}))
    config = FuzzConfig.load(path)
    assert config.fetch_keymap == "f5"
    assert config.open_keymap == "ctrl+o"


def test_invalid_file_falls_back(tmp_path: Path, caplog):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert FuzzConfig.load(path) == FuzzConfig()
    assert "Ignoring unreadable config" in caplog.text

    path.write_text("[1, 2]")
    assert FuzzConfig.load(path) == FuzzConfig()


def test_setup_uses_explicit_config(tmp_path: Path):
    config = FuzzConfig(remote="upstream")
    app = setup(config, tmp_path)
    assert isinstance(app, BranchPickerApp)
    assert app.config is config
    assert app.cwd == tmp_path.resolve()
    assert setup().config == FuzzConfig()


def test_mistyped_values_fall_back_to_defaults(tmp_path: Path, caplog):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "log_level": 10,
        "max_results": "x",
        "include_remote": 1,
        "use_terminal": True,
        "push_keymap": "f9",
    }))
    config = FuzzConfig.load(path)
    assert config.log_level == "WARNING"
    assert config.max_results == 10
    assert config.include_remote is False
    assert config.use_terminal is True
    assert config.push_keymap == "f9"
    assert "log_level=10 has the wrong type" in caplog.text
    assert "max_results='x' has the wrong type" in caplog.text
