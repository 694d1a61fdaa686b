"""
Default value application for configuration.

Environment variables override YAML only when they are explicitly set.
This module handles:
- Character selection
- Audio calibration (noise gate, devices, capture block size)
- Level meter cadence
- Logging level and format
"""

import os
from typing import Any, Dict, Optional, Union


def _block(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = config_data.get(name)
    if not isinstance(block, dict):
        block = {}
    config_data[name] = block
    return block


def _device_selector(raw: str) -> Optional[Union[int, str]]:
    """Device selectors are numeric indices or name substrings; empty means default."""
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return raw


def apply_character_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply character selection.

    Environment variables:
    - VOICELINK_CHARACTER: registry key of the character (default: shinchan)

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    if 'VOICELINK_CHARACTER' in os.environ:
        config_data['character'] = os.environ['VOICELINK_CHARACTER'].strip().lower()
    config_data.setdefault('character', 'shinchan')


def apply_audio_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply audio calibration overrides.

    Environment variables (optional overrides):
    - NOISE_GATE_THRESHOLD: peak amplitude below which frames are dropped
    - CAPTURE_BLOCK_SIZE: microphone frames per capture callback
    - AUDIO_INPUT_DEVICE: input device index or name substring
    - AUDIO_OUTPUT_DEVICE: output device index or name substring

    Raises:
        ValueError: If a numeric override cannot be parsed
    """
    audio_cfg = _block(config_data, 'audio')

    if 'NOISE_GATE_THRESHOLD' in os.environ:
        audio_cfg['noise_gate_threshold'] = float(os.environ['NOISE_GATE_THRESHOLD'])

    if 'CAPTURE_BLOCK_SIZE' in os.environ:
        audio_cfg['capture_block_size'] = int(os.environ['CAPTURE_BLOCK_SIZE'])

    if 'AUDIO_INPUT_DEVICE' in os.environ:
        audio_cfg['input_device'] = _device_selector(os.environ['AUDIO_INPUT_DEVICE'])

    if 'AUDIO_OUTPUT_DEVICE' in os.environ:
        audio_cfg['output_device'] = _device_selector(os.environ['AUDIO_OUTPUT_DEVICE'])


def apply_meter_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - METER_REFRESH_HZ: level meter sampling cadence
    """
    meter_cfg = _block(config_data, 'meter')
    if 'METER_REFRESH_HZ' in os.environ:
        meter_cfg['refresh_hz'] = float(os.environ['METER_REFRESH_HZ'])


def apply_logging_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - LOG_LEVEL: debug|info|warning|error|critical
    - LOG_FORMAT: json|console
    """
    logging_cfg = _block(config_data, 'logging')
    if os.getenv('LOG_LEVEL'):
        logging_cfg['level'] = os.environ['LOG_LEVEL'].strip().upper()
    if os.getenv('LOG_FORMAT'):
        logging_cfg['format'] = os.environ['LOG_FORMAT'].strip().lower()
