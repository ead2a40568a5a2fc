"""Tests for config storage."""

import json

from backend import storage


def test_get_config_empty():
    """Returns defaults when no config file exists."""
    config = storage.get_config()
    assert config == {"typing_delay_ms": 2000, "default_script": "", "autoload": True}


def test_update_config_persists():
    result = storage.update_config({"typing_delay_ms": 500})
    assert result["typing_delay_ms"] == 500

    reloaded = storage.get_config()
    assert reloaded["typing_delay_ms"] == 500
    assert reloaded["default_script"] == ""


def test_update_config_partial():
    """Separate updates do not clobber each other."""
    storage.update_config({"default_script": "example"})
    storage.update_config({"autoload": False})

    config = storage.get_config()
    assert config["default_script"] == "example"
    assert config["autoload"] is False
    assert config["typing_delay_ms"] == 2000


def test_unknown_keys_are_ignored():
    result = storage.update_config({"theme": "dark"})
    assert "theme" not in result
    stored = json.loads((storage.data_dir() / "config.json").read_text())
    assert "theme" not in stored


def test_stored_file_merges_over_defaults():
    (storage.data_dir() / "config.json").write_text(json.dumps({"autoload": False}))
    config = storage.get_config()
    assert config["autoload"] is False
    assert config["typing_delay_ms"] == 2000
