"""
Unit tests for config.security module.

The Live API key is taken from the environment only; YAML values are
always overwritten.
"""

from voicelink.config.security import _is_nonempty_string, inject_live_api_key, resolve_api_key


class TestIsNonemptyString:
    def test_valid_string(self):
        assert _is_nonempty_string("AIza-test") is True

    def test_blank_strings(self):
        assert _is_nonempty_string("") is False
        assert _is_nonempty_string("  \t") is False

    def test_non_strings(self):
        assert _is_nonempty_string(None) is False
        assert _is_nonempty_string(123) is False


class TestResolveApiKey:
    def test_none_when_unset(self):
        assert resolve_api_key() is None

    def test_gemini_key_preferred(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
        monkeypatch.setenv("API_KEY", "generic-key")

        assert resolve_api_key() == "gemini-key"

    def test_falls_through_blank_values(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "   ")
        monkeypatch.setenv("API_KEY", " generic-key \n")

        assert resolve_api_key() == "generic-key"


class TestInjectLiveApiKey:
    def test_yaml_key_is_ignored(self):
        """A key committed to YAML never reaches the config."""
        config_data = {"live_api": {"api_key": "from-yaml", "model": "m"}}

        inject_live_api_key(config_data)

        assert config_data["live_api"]["api_key"] is None
        assert config_data["live_api"]["model"] == "m"

    def test_environment_key_injected(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
        config_data = {}

        inject_live_api_key(config_data)

        assert config_data["live_api"] == {"api_key": "google-key"}

    def test_non_mapping_block_replaced(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
        config_data = {"live_api": None}

        inject_live_api_key(config_data)

        assert config_data["live_api"]["api_key"] == "gemini-key"
