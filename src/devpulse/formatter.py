"""Output formatting for devpulse command results."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import yaml
from pydantic import BaseModel

FORMATS = ("json", "yaml")


def to_plain(data: Any) -> Any:
    """Convert models (and containers of models) to JSON-compatible values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, Mapping):
        return {str(key): to_plain(value) for key, value in data.items()}
    if isinstance(data, list | tuple):
        return [to_plain(item) for item in data]
    return data


def format_json(data: Any) -> str:
    """Format a result as indented JSON."""
    return json.dumps(to_plain(data), indent=2)


def format_yaml(data: Any) -> str:
    """Format a result as a YAML document."""
    return yaml.safe_dump(to_plain(data), sort_keys=False, allow_unicode=True)


def format_output(data: Any, fmt: str = "json") -> str:
    if fmt == "yaml":
        return format_yaml(data)
    return format_json(data)
