from __future__ import annotations

"""Configuration loading and validation for the assessor.

This module loads YAML configuration, applies defaults, and validates
enumerations and numeric ranges. Test decks for offline use are YAML too
and are loaded here as well.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import sys

import yaml

from ..remote.http_store import DEFAULT_ENDPOINTS, DEFAULT_TIMEOUTS
from ..results.schema import MODES, TestDefinition


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"ERROR: Config file not found: {path}", file=sys.stderr)
        sys.exit(1)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML or defaults.

    Args:
        path: Optional path to a YAML config. If None, use package defaults.

    Returns:
        A dictionary with configuration values.
    """
    if path:
        cfg = _load_yaml(Path(path))
    else:
        default_path = Path(__file__).with_name("defaults.yml")
        cfg = _load_yaml(default_path)
    return cfg


def validate_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults and validate configuration values.

    Invalid values are reported with a WARNING line and replaced by the
    default rather than aborting.

    Args:
        cfg: The raw configuration dictionary.

    Returns:
        The validated and merged configuration dictionary.
    """
    # Shallow defaults for missing sections
    cfg.setdefault("api", {})
    cfg.setdefault("session", {})
    cfg.setdefault("history", {})
    cfg.setdefault("explain", False)

    api = cfg["api"]
    session = cfg["session"]
    history = cfg["history"]

    api.setdefault("base_url", None)
    endpoints = api.setdefault("endpoints", {})
    for name, rel in DEFAULT_ENDPOINTS.items():
        endpoints.setdefault(name, rel)
    timeouts = api.setdefault("timeouts", {})
    for name, secs in DEFAULT_TIMEOUTS.items():
        timeouts.setdefault(name, secs)

    session.setdefault("sync_interval_s", 5)
    session.setdefault("tick_interval_s", 1)
    session.setdefault("strict", False)
    session.setdefault("default_mode", "test")

    history.setdefault("enabled", True)
    history.setdefault("data_dir", "./storage/data")

    # Numeric validations
    for name, secs in DEFAULT_TIMEOUTS.items():
        value = timeouts.get(name)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            print(f"WARNING: Invalid timeout '{name}'={value!r}, using {secs}s.")
            timeouts[name] = secs

    for key, default in (("sync_interval_s", 5), ("tick_interval_s", 1)):
        value = session.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            print(f"WARNING: Invalid session.{key} {value!r}, using {default}.")
            session[key] = default

    # Enum validations
    mode = session.get("default_mode")
    if mode not in MODES:
        print(f"WARNING: Unsupported default_mode '{mode}', using 'test'.")
        session["default_mode"] = "test"

    base_url = api.get("base_url")
    if base_url is not None and not str(base_url).startswith(("http://", "https://")):
        print(f"WARNING: api.base_url '{base_url}' is not an http(s) URL, working offline.")
        api["base_url"] = None

    session["strict"] = bool(session["strict"])
    history["enabled"] = bool(history["enabled"])
    cfg["explain"] = bool(cfg["explain"])

    return cfg


def load_test_definition(path: str) -> TestDefinition:
    """Read a test deck from YAML.

    The file holds one test in the same shape the tests endpoint returns:
    `id`, `title`, `questions` (each with `id`, `question`, `options`,
    `correct_index`) and the optional `passing_score`, `max_attempts`,
    `randomize_answers`.
    """
    raw = _load_yaml(Path(path))
    if "questions" not in raw:
        raise ValueError(f"{path}: no questions defined")
    raw.setdefault("id", Path(path).stem)
    raw.setdefault("title", raw["id"])
    for i, q in enumerate(raw["questions"]):
        q.setdefault("id", f"{raw['id']}-q{i + 1}")
    return TestDefinition.from_json(raw)
