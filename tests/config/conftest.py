import pytest

from voicelink.config.security import API_KEY_ENV_VARS

_OVERRIDE_VARS = (
    "VOICELINK_CHARACTER",
    "NOISE_GATE_THRESHOLD",
    "CAPTURE_BLOCK_SIZE",
    "AUDIO_INPUT_DEVICE",
    "AUDIO_OUTPUT_DEVICE",
    "METER_REFRESH_HZ",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Config tests must not see the developer's shell environment."""
    for name in API_KEY_ENV_VARS + _OVERRIDE_VARS:
        monkeypatch.delenv(name, raising=False)
