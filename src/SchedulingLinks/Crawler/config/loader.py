# === NAVMAP v1 ===
# {
#   "module": "SchedulingLinks.Crawler.config.loader",
#   "purpose": "Layered crawler configuration: file, then SLC_ environment, then CLI.",
#   "sections": [
#     {"id": "read-config-file", "name": "read_config_file", "anchor": "function-read-config-file", "kind": "function"},
#     {"id": "env-overrides", "name": "env_overrides", "anchor": "function-env-overrides", "kind": "function"},
#     {"id": "deep-merge", "name": "_deep_merge", "anchor": "function-deep-merge", "kind": "function"},
#     {"id": "load-config", "name": "load_config", "anchor": "function-load-config", "kind": "function"},
#     {"id": "validate-config-file", "name": "validate_config_file", "anchor": "function-validate-config-file", "kind": "function"},
#     {"id": "export-config-schema", "name": "export_config_schema", "anchor": "function-export-config-schema", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Layered crawler configuration.

Three layers are merged, later layers winning:

1. **File**: YAML (``.yaml``/``.yml``) or JSON (``.json``) mapping
2. **Environment**: ``SLC_`` variables, ``__`` separating nested keys::

       SLC_CACHE__RATE_LIMIT_WINDOW_S=30      -> cache.rate_limit_window_s = 30
       SLC_STORAGE__DB_PATH=/srv/crawler.db   -> storage.db_path = "/srv/crawler.db"

3. **CLI**: nested dict of overrides; ``None`` leaves mean "flag not given"

Only variables that name a :class:`CrawlerConfig` field take part; others
(``SLC_LOCK_USE_SOFT``, ``SLC_CONFIG``) belong to the modules that read them.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, get_args

import yaml
from pydantic.fields import FieldInfo

from .models import CrawlerConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "SLC_"


def _parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc


_PARSERS: dict[str, Callable[[str], Any]] = {
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".json": _parse_json,
}


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a config file into a plain mapping.

    Raises:
        ValueError: Missing or unreadable file, unknown suffix, parse error, or
            a top level that is not a mapping.
    """
    source = Path(path)
    parser = _PARSERS.get(source.suffix.lower())
    if parser is None:
        raise ValueError(f"Unsupported config format {source.suffix!r} for {path}; use YAML or JSON")
    if not source.is_file():
        raise ValueError(f"Config file not found: {path}")
    try:
        parsed = parser(source.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValueError(f"Cannot read config file {path}: {exc}") from exc
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return parsed


def _is_text(annotation: Any) -> bool:
    if annotation is str:
        return True
    args = get_args(annotation)
    return bool(args) and all(arg in (str, type(None)) for arg in args)


def _env_value(raw: str, annotation: Any = None) -> Any:
    """JSON literal when possible (numbers, booleans, lists), else the raw string.

    Text fields always take the raw string, so ``SLC_RUN_ID=123`` stays ``"123"``.
    """
    if _is_text(annotation):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        lowered = raw.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        return raw


def _config_field(name: str) -> tuple[tuple[str, ...], FieldInfo] | None:
    """Map ``cache__rate_limit_window_s`` to its path and pydantic field."""

    parts = tuple(name.split("__"))
    top = CrawlerConfig.model_fields.get(parts[0])
    if top is None or len(parts) > 2:
        return None
    if len(parts) == 1:
        return parts, top
    nested_fields = getattr(top.annotation, "model_fields", None)
    if not nested_fields or parts[1] not in nested_fields:
        return None
    return parts, nested_fields[parts[1]]


def env_overrides(
    environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX
) -> dict[str, Any]:
    """Collect config overrides from ``environ`` (``os.environ`` by default)."""

    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.startswith(prefix):
            continue
        found = _config_field(key[len(prefix) :].lower())
        if found is None:
            _LOGGER.debug(f"Ignoring {key}: not a config field")
            continue
        path, field = found
        value = _env_value(raw, field.annotation)
        target = overrides
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value
        _LOGGER.debug(f"{key} sets {'.'.join(path)} = {value!r}")
    return overrides


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` into ``base`` in place, skipping ``None`` leaves."""

    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            current = base.get(key)
            base[key] = _deep_merge(current if isinstance(current, dict) else {}, value)
        else:
            base[key] = value
    return base


def load_config(
    path: str | Path | None = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> CrawlerConfig:
    """
    Build the effective :class:`CrawlerConfig`.

    Args:
        path: Optional YAML/JSON file forming the base layer
        env_prefix: Prefix of environment overrides
        cli_overrides: Nested overrides from the command line, applied last

    Raises:
        ValueError: Unreadable file or invalid result (pydantic's
            ``ValidationError`` is a ``ValueError``)
    """
    data: dict[str, Any] = read_config_file(path) if path else {}
    if path:
        _LOGGER.info(f"Loaded config from {path}")

    _deep_merge(data, env_overrides(prefix=env_prefix))
    _deep_merge(data, cli_overrides or {})

    config = CrawlerConfig.model_validate(data)
    _LOGGER.debug(f"Effective config hash {config.config_hash()[:8]}")
    return config


def validate_config_file(path: str | Path) -> bool:
    """Validate ``path`` alone, without environment or CLI layers.

    Raises:
        ValueError: The file is unreadable or does not validate.
    """
    CrawlerConfig.model_validate(read_config_file(path))
    return True


def export_config_schema() -> dict[str, Any]:
    """JSON schema of :class:`CrawlerConfig`."""

    return CrawlerConfig.model_json_schema()
