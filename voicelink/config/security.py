"""
Credential injection for the Live API.

SECURITY POLICY:
- The API key MUST NEVER be read from YAML files
- It comes from the environment only, so it cannot leak through a
  committed configuration file

Environment variables, first non-empty wins:
- GEMINI_API_KEY
- GOOGLE_API_KEY
- API_KEY
"""

import os
from typing import Any, Dict, Optional

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


def _is_nonempty_string(val: Any) -> bool:
    """True if val is a string with non-whitespace content."""
    return isinstance(val, str) and val.strip() != ""


def resolve_api_key() -> Optional[str]:
    """Return the first non-empty API key found in the environment, stripped."""
    for name in API_KEY_ENV_VARS:
        value = os.getenv(name)
        if _is_nonempty_string(value):
            return value.strip()
    return None


def inject_live_api_key(config_data: Dict[str, Any]) -> None:
    """
    Inject the Live API key from environment variables ONLY.

    Any ``live_api.api_key`` present in YAML is overwritten, with ``None`` when
    no environment variable is set. A missing key is not an error here; it
    surfaces as ``API_KEY_MISSING`` when a session tries to open the channel.

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    live_block = config_data.get('live_api')
    if not isinstance(live_block, dict):
        live_block = {}
    live_block['api_key'] = resolve_api_key()
    config_data['live_api'] = live_block
