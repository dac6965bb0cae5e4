"""Helper utilities for accessing configuration sections regardless of the backing loader."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict


def _as_dict(candidate: Any) -> Dict:
    to_dict = getattr(candidate, 'to_dict', None)
    if callable(to_dict):
        return dict(to_dict())
    return dict(candidate)


def get_config_section(source: Any, section: str) -> Dict:
    """Return a dictionary section from Config, SectionProxy, or plain dict objects."""
    if source is None:
        return {}

    if isinstance(source, Mapping):
        candidate = source.get(section, {})
        return _as_dict(candidate) if isinstance(candidate, Mapping) else {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, {})
        if isinstance(candidate, Mapping):
            return _as_dict(candidate)

    attr = getattr(source, section, None)
    if isinstance(attr, Mapping):
        return _as_dict(attr)

    return {}
