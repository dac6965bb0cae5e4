import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'

# ${NAME} or ${NAME:-fallback}
_ENV_PATTERN = re.compile(r'^\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*))?\}$')


def _wrap(value: Any) -> Any:
    return SectionProxy(value) if isinstance(value, dict) else value


def resolve_env_vars(node: Any) -> Any:
    """Substitute ``${NAME}`` / ``${NAME:-fallback}`` strings from the environment.

    A placeholder whose variable is unset and has no fallback is left untouched,
    so callers can tell "not configured" apart from an empty value.
    """
    if isinstance(node, dict):
        return {key: resolve_env_vars(value) for key, value in node.items()}
    if isinstance(node, list):
        return [resolve_env_vars(item) for item in node]
    if isinstance(node, str):
        match = _ENV_PATTERN.match(node.strip())
        if match:
            name, fallback = match.groups()
            value = os.getenv(name)
            if value is not None:
                return value
            return fallback if fallback is not None else node
    return node


class SectionProxy(Mapping):
    """Read-only view of a config mapping with attribute access for nested keys."""

    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        return _wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        value = self._data.get(name)
        if value is None:
            raise AttributeError(f"Config key '{name}' not found")
        return _wrap(value)

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return _wrap(self._data.get(key, default))

    def to_dict(self) -> Dict[str, Any]:
        return self._data


class Config(SectionProxy):
    """Bot configuration loaded from YAML.

    The file is ``config_path`` when given, else ``$BOT_CONFIG_PATH``, else the
    ``config.yaml`` shipped next to this module.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path or os.getenv('BOT_CONFIG_PATH') or DEFAULT_CONFIG_PATH)
        super().__init__(self._load_config())

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise RuntimeError(f"Configuration file not found at {self.config_path}")
        with self.config_path.open('r') as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise RuntimeError(f"Error parsing YAML configuration: {exc}") from exc
        if not isinstance(raw, dict):
            raise RuntimeError(f"Configuration root in {self.config_path} must be a mapping")
        return resolve_env_vars(raw)

    def reload(self, config_path: Optional[Union[str, Path]] = None) -> None:
        if config_path is not None:
            self.config_path = Path(config_path)
        self._data = self._load_config()


config = Config()
