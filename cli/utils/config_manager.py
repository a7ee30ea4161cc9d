"""Configuration Management for CLI Settings"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()

DEFAULT_CONFIG: dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:8000",
        "timeout": 30,
    },
    "display": {
        "jobs_per_page": 20,
    },
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base`` (base is modified)"""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class ConfigManager:
    """
    YAML-backed CLI settings addressed with dot notation ('api.base_url').

    The file lives in ``$LABMATCH_CONFIG_DIR`` or ``~/.labmatch`` and only
    holds values written with ``labmatch config set``; everything else comes
    from the defaults.
    """

    def __init__(self, config_dir: Path | None = None):
        env_dir = os.getenv("LABMATCH_CONFIG_DIR")
        self.config_dir = config_dir or (Path(env_dir) if env_dir else Path.home() / ".labmatch")
        self.config_file = self.config_dir / "config.yaml"

    def get_default_config(self) -> dict[str, Any]:
        defaults = copy.deepcopy(DEFAULT_CONFIG)
        if env_url := os.getenv("LABMATCH_API_URL"):
            defaults["api"]["base_url"] = env_url
        return defaults

    def _read_file(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config, using defaults: {e}[/red]")
            return {}
        if not isinstance(data, dict):
            console.print(f"[red]Ignoring malformed config file {self.config_file}[/red]")
            return {}
        return data

    def load_config(self) -> dict[str, Any]:
        """Defaults with the config file layered on top"""
        return _merge(self.get_default_config(), self._read_file())

    def save_config(self, config: dict[str, Any]):
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get(self, key: str, default: Any = None) -> Any:
        value: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any):
        config = self._read_file()
        *parents, leaf = key.split(".")

        section = config
        for part in parents:
            if not isinstance(section.get(part), dict):
                section[part] = {}
            section = section[part]

        section[leaf] = value
        self.save_config(config)

    def unset(self, key: str) -> bool:
        """Drop a value from the file so its default applies again"""
        config = self._read_file()
        *parents, leaf = key.split(".")

        section = config
        for part in parents:
            section = section.get(part)
            if not isinstance(section, dict):
                return False
        if leaf not in section:
            return False

        del section[leaf]
        self.save_config(config)
        return True

    def reset(self):
        """Forget every stored value"""
        self.save_config({})


# Global config manager instance
config = ConfigManager()
