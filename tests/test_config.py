"""
Tests for config.py.

Covers:
  - env helpers: flags, floats, keyword lists
  - credential_configured(): empty and placeholder keys
  - detector_config(): snapshot of module values, None overrides ignored
"""
from __future__ import annotations

import pytest

import config
from product_classifier import DEFAULT_PRODUCT_KEYWORDS


class TestEnvHelpers:
    @pytest.mark.parametrize("raw", ["1", "true", "TRUE", " yes ", "on"])
    def test_truthy_flags(self, monkeypatch, raw):
        monkeypatch.setenv("SOME_FLAG", raw)
        assert config._env_flag("SOME_FLAG", False) is True

    def test_other_values_are_false(self, monkeypatch):
        monkeypatch.setenv("SOME_FLAG", "nope")
        assert config._env_flag("SOME_FLAG", True) is False

    def test_missing_flag_uses_default(self, monkeypatch):
        monkeypatch.delenv("SOME_FLAG", raising=False)
        assert config._env_flag("SOME_FLAG", True) is True

    def test_bad_float_uses_default(self, monkeypatch):
        monkeypatch.setenv("SOME_FLOAT", "fast")
        assert config._env_float("SOME_FLOAT", 2.5) == 2.5

    def test_keywords_parsed_and_lowered(self, monkeypatch):
        monkeypatch.setenv("SOME_WORDS", " Mug, bottle ,,Sneaker ")
        assert config._env_keywords("SOME_WORDS") == ("mug", "bottle", "sneaker")

    def test_empty_keywords_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("SOME_WORDS", " , ")
        assert config._env_keywords("SOME_WORDS") == DEFAULT_PRODUCT_KEYWORDS


class TestCredentialConfigured:
    @pytest.mark.parametrize("key", [None, "", "YOUR_API_KEY_HERE", "  YOUR_API_KEY_HERE "])
    def test_not_configured(self, key):
        assert config.credential_configured(key) is False

    def test_real_key(self):
        assert config.credential_configured("AIzaSyExample") is True


class TestDetectorConfig:
    def test_snapshot_reads_module_values(self, monkeypatch):
        monkeypatch.setattr(config, "PREFER_REMOTE", True)
        monkeypatch.setattr(config, "GOOGLE_CLOUD_VISION_API_KEY", "AIzaSyExample")
        monkeypatch.setattr(config, "ZOOM_LEVEL", 3.0)
        monkeypatch.setattr(config, "PRODUCT_KEYWORDS", ("gnome",))

        cfg = config.detector_config()

        assert cfg.prefer_remote is True
        assert cfg.remote_credential_configured is True
        assert cfg.zoom_factor == 3.0
        assert cfg.product_keywords == frozenset({"gnome"})

    def test_placeholder_key_not_configured(self, monkeypatch):
        monkeypatch.setattr(config, "GOOGLE_CLOUD_VISION_API_KEY", "YOUR_API_KEY_HERE")
        assert config.detector_config().remote_credential_configured is False

    def test_overrides_win_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setattr(config, "PREFER_REMOTE", True)
        cfg = config.detector_config(prefer_remote=None, auto_zoom_enabled=False, zoom_factor=1.5)
        assert cfg.prefer_remote is True
        assert cfg.auto_zoom_enabled is False
        assert cfg.zoom_factor == 1.5

    def test_snapshot_is_frozen(self):
        cfg = config.detector_config()
        with pytest.raises(AttributeError):
            cfg.prefer_remote = True
