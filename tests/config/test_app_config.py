"""
Integration tests for load_config.

Loading runs YAML expansion, credential injection, environment overrides
and pydantic validation in that order.
"""

import pydantic
import pytest

from voicelink.config import AppConfig, MeterConfig, load_config


class TestLoadConfig:
    def test_shipped_sample_config(self):
        config = load_config()

        assert config.character == "shinchan"
        assert config.audio.noise_gate_threshold == pytest.approx(0.025)
        assert config.live_api.input_sample_rate_hz == 16000
        assert config.live_api.output_sample_rate_hz == 24000
        assert config.live_api.api_key is None

    def test_without_file(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
        monkeypatch.setenv("NOISE_GATE_THRESHOLD", "0.01")

        config = load_config(None)

        assert config.live_api.api_key == "gemini-key"
        assert config.audio.noise_gate_threshold == pytest.approx(0.01)
        assert config.meter.refresh_hz == 60.0

    def test_yaml_values_and_env_overrides(self, tmp_path, monkeypatch):
        config_file = tmp_path / "voicelink.yaml"
        config_file.write_text(
            """
character: bluey
live_api:
  api_key: committed-by-mistake
audio:
  noise_gate_threshold: 0.05
meter:
  refresh_hz: 30
"""
        )
        monkeypatch.setenv("METER_REFRESH_HZ", "20")

        config = load_config(str(config_file))

        assert config.character == "bluey"
        assert config.live_api.api_key is None
        assert config.audio.noise_gate_threshold == pytest.approx(0.05)
        assert config.meter.refresh_hz == 20.0

    def test_unknown_character_rejected_at_load(self, monkeypatch):
        monkeypatch.setenv("VOICELINK_CHARACTER", "shinchann")

        with pytest.raises(pydantic.ValidationError, match="Unknown character"):
            load_config(None)

    def test_character_key_normalized(self, monkeypatch):
        monkeypatch.setenv("VOICELINK_CHARACTER", " Bluey ")

        assert load_config(None).character == "bluey"

    def test_out_of_range_threshold_rejected(self, monkeypatch):
        monkeypatch.setenv("NOISE_GATE_THRESHOLD", "1.5")

        with pytest.raises(pydantic.ValidationError):
            load_config(None)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))


class TestModels:
    def test_defaults_are_valid(self):
        config = AppConfig()

        assert config.live_api.response_modalities == ["AUDIO"]
        assert config.meter.fft_size == 256
        assert config.audio.input_device is None

    def test_fft_size_must_be_power_of_two(self):
        with pytest.raises(pydantic.ValidationError):
            MeterConfig(fft_size=300)
