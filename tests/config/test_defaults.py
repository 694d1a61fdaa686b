"""
Unit tests for config.defaults module.

Environment variables override YAML values only when they are set.
"""

import pytest

from voicelink.config.defaults import (
    apply_audio_defaults,
    apply_character_defaults,
    apply_logging_defaults,
    apply_meter_defaults,
)


class TestApplyCharacterDefaults:
    def test_default_character(self):
        config_data = {}
        apply_character_defaults(config_data)

        assert config_data["character"] == "shinchan"

    def test_yaml_value_preserved(self):
        config_data = {"character": "bluey"}
        apply_character_defaults(config_data)

        assert config_data["character"] == "bluey"

    def test_env_override_normalized(self, monkeypatch):
        monkeypatch.setenv("VOICELINK_CHARACTER", " Bluey ")
        config_data = {"character": "shinchan"}
        apply_character_defaults(config_data)

        assert config_data["character"] == "bluey"


class TestApplyAudioDefaults:
    def test_no_env_leaves_yaml_alone(self):
        config_data = {"audio": {"noise_gate_threshold": 0.01}}
        apply_audio_defaults(config_data)

        assert config_data["audio"] == {"noise_gate_threshold": 0.01}

    def test_noise_gate_override(self, monkeypatch):
        monkeypatch.setenv("NOISE_GATE_THRESHOLD", "0.04")
        config_data = {"audio": {"noise_gate_threshold": 0.01}}
        apply_audio_defaults(config_data)

        assert config_data["audio"]["noise_gate_threshold"] == pytest.approx(0.04)

    def test_invalid_noise_gate(self, monkeypatch):
        monkeypatch.setenv("NOISE_GATE_THRESHOLD", "loud")

        with pytest.raises(ValueError):
            apply_audio_defaults({})

    def test_device_selectors(self, monkeypatch):
        """Numeric selectors become indices, others stay name substrings."""
        monkeypatch.setenv("AUDIO_INPUT_DEVICE", "2")
        monkeypatch.setenv("AUDIO_OUTPUT_DEVICE", "USB Headset")
        config_data = {}
        apply_audio_defaults(config_data)

        assert config_data["audio"]["input_device"] == 2
        assert config_data["audio"]["output_device"] == "USB Headset"

    def test_blank_selector_means_default_device(self, monkeypatch):
        monkeypatch.setenv("AUDIO_INPUT_DEVICE", "")
        config_data = {"audio": {"input_device": "Built-in"}}
        apply_audio_defaults(config_data)

        assert config_data["audio"]["input_device"] is None

    def test_capture_block_size(self, monkeypatch):
        monkeypatch.setenv("CAPTURE_BLOCK_SIZE", "1024")
        config_data = {}
        apply_audio_defaults(config_data)

        assert config_data["audio"]["capture_block_size"] == 1024


class TestApplyMeterAndLoggingDefaults:
    def test_meter_refresh(self, monkeypatch):
        monkeypatch.setenv("METER_REFRESH_HZ", "30")
        config_data = {"meter": None}
        apply_meter_defaults(config_data)

        assert config_data["meter"]["refresh_hz"] == 30.0

    def test_logging_overrides(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "Console")
        config_data = {"logging": {"level": "INFO"}}
        apply_logging_defaults(config_data)

        assert config_data["logging"] == {"level": "DEBUG", "format": "console"}

    def test_empty_logging_env_ignored(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "")
        config_data = {"logging": {"level": "WARNING"}}
        apply_logging_defaults(config_data)

        assert config_data["logging"]["level"] == "WARNING"
