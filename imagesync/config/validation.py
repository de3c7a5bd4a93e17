"""Helpers for validating imagesync config JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from imagesync.config.loader import convert_keys, convert_to_camel
from imagesync.config.schema import Config


def load_json_file(path: Path) -> dict[str, Any]:
    """Load a JSON object from file."""
    with path.open() as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a JSON object")
    return data


def normalize_config_data(data: dict[str, Any]) -> dict[str, Any]:
    """Validate config object and serialize into canonical camelCase output."""
    validated = Config.model_validate(convert_keys(data))
    return convert_to_camel(validated.model_dump())


def find_unknown_keys(source: Any, normalized: Any, prefix: str = "") -> list[str]:
    """List dotted key paths present in ``source`` but dropped by schema normalization.

    Lists are compared as values (``backoffSeconds``), not walked.
    """
    if not isinstance(source, dict):
        return []
    known = normalized if isinstance(normalized, dict) else {}
    unknown: list[str] = []
    for key, value in source.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if key not in known:
            unknown.append(dotted)
            continue
        unknown.extend(find_unknown_keys(value, known[key], dotted))
    return unknown
