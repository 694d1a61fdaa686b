"""YAML configuration loading with ``$VAR`` / ``${VAR}`` expansion."""

import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml

# Repository root: relative config paths are anchored here, not at the CWD
_PROJ_DIR = Path(__file__).resolve().parents[2]

PathLike = Union[str, os.PathLike]


def resolve_config_path(path: PathLike) -> str:
    """Absolute paths pass through; relative ones resolve against the repository root."""
    candidate = Path(path)
    if candidate.is_absolute():
        return str(candidate)
    return str(_PROJ_DIR / candidate)


def load_yaml_with_env_expansion(path: PathLike) -> Dict[str, Any]:
    """
    Read a YAML mapping after expanding environment references.

    Undefined variables are left as written. An empty document yields ``{}``.

    Raises:
        FileNotFoundError: If ``path`` does not exist
        yaml.YAMLError: If the text is not valid YAML or its root is not a mapping
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {config_path}")

    expanded = os.path.expandvars(config_path.read_text(encoding="utf-8"))
    try:
        document = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration {config_path.name}: {e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise yaml.YAMLError(
            f"Configuration root must be a mapping, got {type(document).__name__}"
        )
    return document
