"""
Configuration for the voicelink session manager.

Pydantic v2 models validate every section. ``load_config`` builds an
``AppConfig`` in phases: YAML load with environment expansion, credential
injection from the environment, environment overrides, validation.
"""

from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, Field, field_validator

from voicelink.characters import get_character
from voicelink.config.defaults import (
    apply_audio_defaults,
    apply_character_defaults,
    apply_logging_defaults,
    apply_meter_defaults,
)
from voicelink.config.loaders import load_yaml_with_env_expansion, resolve_config_path
from voicelink.config.security import inject_live_api_key

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/voicelink.yaml"


class LiveApiConfig(BaseModel):
    api_key: Optional[str] = None
    model: str = Field(default="gemini-2.5-flash-native-audio-preview-09-2025")
    endpoint: str = Field(
        default="wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
    )
    response_modalities: List[str] = Field(default_factory=lambda: ["AUDIO"])
    input_sample_rate_hz: int = Field(default=16000)  # Live API requires 16 kHz input
    output_sample_rate_hz: int = Field(default=24000)  # Live API emits 24 kHz audio
    max_message_bytes: int = Field(default=10 * 1024 * 1024)


class AudioConfig(BaseModel):
    # Calibration, not contract: observed deployments used 0.025 and 0.01
    noise_gate_threshold: float = Field(default=0.025, ge=0.0, le=1.0)
    capture_block_size: int = Field(default=4096, gt=0)
    input_device: Optional[Union[int, str]] = None
    output_device: Optional[Union[int, str]] = None
    log_every_n_frames: int = Field(default=50, gt=0)
    max_pending_sends: int = Field(default=8, gt=0)


class MeterConfig(BaseModel):
    refresh_hz: float = Field(default=60.0, gt=0.0)
    fft_size: int = Field(default=256)
    output_ceiling: float = Field(default=100.0, gt=0.0)
    input_ceiling: float = Field(default=80.0, gt=0.0)  # mic energy runs weaker than playback
    talking_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    input_smoothing: float = Field(default=0.3, gt=0.0, le=1.0)

    @field_validator("fft_size")
    @classmethod
    def _power_of_two(cls, value: int) -> int:
        if value < 32 or value & (value - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        return value


class NetworkConfig(BaseModel):
    probe_host: str = Field(default="generativelanguage.googleapis.com")
    probe_port: int = Field(default=443)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(default="json")


class AppConfig(BaseModel):
    character: str = Field(default="shinchan")
    live_api: LiveApiConfig = Field(default_factory=LiveApiConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    meter: MeterConfig = Field(default_factory=MeterConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("character")
    @classmethod
    def _known_character(cls, value: str) -> str:
        return get_character(value).key


def load_config(path: Optional[str] = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load and validate configuration.

    Args:
        path: YAML file path (absolute or relative to project root). ``None``
            skips the file and builds the configuration from defaults and
            environment variables alone.

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If the configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If a value is out of range
    """
    config_data: Dict[str, Any] = {}
    if path is not None:
        path = resolve_config_path(path)
        config_data = load_yaml_with_env_expansion(path)

    inject_live_api_key(config_data)

    apply_character_defaults(config_data)
    apply_audio_defaults(config_data)
    apply_meter_defaults(config_data)
    apply_logging_defaults(config_data)

    config = AppConfig(**config_data)
    logger.debug(
        "Configuration loaded",
        path=path,
        character=config.character,
        noise_gate_threshold=config.audio.noise_gate_threshold,
        has_api_key=bool(config.live_api.api_key),
    )
    return config


__all__ = [
    'AppConfig',
    'AudioConfig',
    'DEFAULT_CONFIG_PATH',
    'LiveApiConfig',
    'LoggingConfig',
    'MeterConfig',
    'NetworkConfig',
    'load_config',
]
