import copy
import os
from typing import Optional

import yaml

DEFAULT_CONFIG = {
    "data_dir": "~/.glimpse",
    "logging_level": "INFO",
    # None means "derive from the CPU count" (see default_threads).
    "thumbnail_threads": None,
    "thumbnail_size": 300,
    "preview_size": 2000,
    "worker_stack_size": 8 * 1024 * 1024,  # bytes; RAW demosaic needs a deep stack
    "ignore_patterns": [],  # glob patterns
    "cache": {
        # Regenerate a cached thumbnail when the source mtime differs from the
        # recorded one. Off: cache hits are decided by file existence alone.
        "check_mtime": False,
    },
}


def _default_config_path() -> str:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return os.path.join(xdg_config_home, "glimpse", "config.yaml")


def _deep_merge(base: dict, override: dict) -> dict:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_cpu_count() -> int:
    """Logical CPU count, 4 when the platform cannot report it."""
    return os.cpu_count() or 4


def default_threads(cpu_count: int) -> int:
    """80% of the logical cores, rounded half away from zero, never below 2."""
    return max(2, int(cpu_count * 0.8 + 0.5))


class ConfigManager:
    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or _default_config_path()
        self.config = self.load_config()

    def load_config(self):
        try:
            with open(self.config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            self.save_config(DEFAULT_CONFIG)
            return _deep_merge(DEFAULT_CONFIG, {})
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config at {self.config_path}") from exc
        return _deep_merge(DEFAULT_CONFIG, user_config)

    def save_config(self, config):
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def get(self, key, default=None):
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    def set(self, key, value):
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value
        self.save_config(self.config)

    @property
    def logging_level(self):
        return self.get("logging_level", "INFO")

    @property
    def data_dir(self) -> str:
        return os.path.expanduser(self.get("data_dir", "~/.glimpse"))

    def thumbnail_thread_count(self, cpu_count: Optional[int] = None) -> int:
        """User override if set, else the CPU-derived default."""
        override = self.get("thumbnail_threads")
        if override:
            return int(override)
        return default_threads(cpu_count if cpu_count is not None else get_cpu_count())
