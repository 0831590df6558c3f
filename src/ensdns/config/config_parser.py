"""Configuration file parsing for ensdns.

Brief:
  Reads the optional YAML config file, overlays command-line overrides, and
  produces a validated ServerConfig. CLI values win over file values; unset
  CLI flags (None) never clobber file values.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import yaml

from .config_schema import ConfigError, ServerConfig, load_server_config


def parse_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read a YAML config file into a mapping.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration (empty when the file is empty).

    Raises:
      - ConfigError: When the file cannot be read, is not valid YAML, or its
        root is not a mapping.
    """

    try:
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config file {config_path!r}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path!r}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")
    return cfg


def merge_overrides(
    cfg: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Brief: Overlay non-None overrides onto a config mapping.

    Inputs:
      - cfg: Base mapping (typically from parse_config_file()).
      - overrides: Mapping of option -> value; None values are ignored. A
        "log_level" key is folded into the nested logging.level option.

    Outputs:
      - dict: New merged mapping; inputs are not mutated.

    Example:
      >>> merge_overrides({"port": 1}, {"port": 2, "host": None})
      {'port': 2}
    """

    merged: Dict[str, Any] = dict(cfg)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "log_level":
            logging_cfg = dict(merged.get("logging") or {})
            logging_cfg["level"] = value
            merged["logging"] = logging_cfg
            continue
        merged[key] = value
    return merged


def build_server_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerConfig:
    """Brief: Load, merge, and validate configuration in one step.

    Inputs:
      - config_path: Optional YAML file path.
      - overrides: Optional CLI overrides.

    Outputs:
      - ServerConfig.

    Raises:
      - ConfigError: On unreadable files or invalid options.
    """

    base: Dict[str, Any] = parse_config_file(config_path) if config_path else {}
    return load_server_config(merge_overrides(base, overrides))
