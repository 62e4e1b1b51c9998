"""
Project configuration: an optional rehost.yaml next to the sources.

    project_name: shop
    platform: hetzner
    ha_level: multi-server
    base_url: https://shop.example.com
    ssl: true
    monitoring: false
    backups: true
    variables:
      location: nbg1

Command-line options override anything set here.
"""
import os
from typing import Any, Dict, Optional

import yaml
from rich.console import Console

from rehost.errors import RehostError
from rehost.models.target import HALevel, Platform, TargetConfig

console = Console(stderr=True)

CONFIG_FILENAMES = ("rehost.yaml", "rehost.yml")

_KEYS = {"project_name", "platform", "ha_level", "base_url", "ssl", "monitoring", "backups", "variables", "output_dir"}


class ConfigError(RehostError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Invalid configuration in {path}: {reason}",
                         "See the rehost.yaml example in rehost/config.py.")


def find_config(directory: str) -> Optional[str]:
    for name in CONFIG_FILENAMES:
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            return path
    return None


def load_config(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as exc:
        raise ConfigError(path, str(exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(path, f"not valid YAML ({exc})") from exc
    if not isinstance(data, dict):
        raise ConfigError(path, "top level must be a mapping")
    for key in sorted(set(data) - _KEYS):
        console.print(f"[yellow]Warning:[/yellow] unknown key '{key}' in {path}, ignoring.")
    variables = data.get("variables", {})
    if not isinstance(variables, dict):
        raise ConfigError(path, "'variables' must be a mapping")
    return {k: v for k, v in data.items() if k in _KEYS}


def build_target_config(file_values: Optional[Dict[str, Any]] = None, **overrides: Any) -> TargetConfig:
    """
    Merge file values and overrides (None means "not given") into a TargetConfig.
    Raises ValueError for an unknown platform or HA level.
    """
    values: Dict[str, Any] = dict(file_values or {})
    values.update({k: v for k, v in overrides.items() if v is not None})

    if "platform" not in values:
        raise ValueError("no target platform given")
    cfg = TargetConfig(platform=Platform.parse(str(values["platform"])))
    if "ha_level" in values:
        cfg.ha_level = HALevel.parse(values["ha_level"])
    if "project_name" in values:
        cfg.project_name = str(values["project_name"])
    if "base_url" in values:
        cfg.base_url = str(values["base_url"])
    if "output_dir" in values:
        cfg.output_dir = str(values["output_dir"])
    if "ssl" in values:
        cfg.ssl_enabled = bool(values["ssl"])
    if "monitoring" in values:
        cfg.include_monitoring = bool(values["monitoring"])
    if "backups" in values:
        cfg.include_backups = bool(values["backups"])
    if "dry_run" in values:
        cfg.dry_run = bool(values["dry_run"])
    cfg.variables = {str(k): str(v) for k, v in (values.get("variables") or {}).items()}
    return cfg
