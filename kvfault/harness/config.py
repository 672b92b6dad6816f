"""
Loading scenario definitions from YAML.

A scenario file maps names to ``ScenarioConfig`` fields::

    scenarios:
      quick_partitions:
        n_clients: 3
        partitions: true
        election_timeout: 0.2

The file is found from an explicit path, else ``KVFAULT_SCENARIOS``, else
``scenarios.yaml`` at the project root.
"""

from __future__ import annotations

from dataclasses import fields
import os
from pathlib import Path

import yaml

from .scenario import ScenarioConfig

ENV_VAR = "KVFAULT_SCENARIOS"

_CONFIG_FIELDS = {f.name for f in fields(ScenarioConfig)}


def _default_config_path() -> Path:
    """Find scenarios.yaml at the project root (parent of kvfault/ package)."""
    return Path(__file__).resolve().parent.parent.parent / "scenarios.yaml"


def resolve_scenario_path(config_path: str | None = None) -> Path:
    if config_path:
        return Path(config_path)
    env_path = os.getenv(ENV_VAR)
    if env_path:
        return Path(env_path)
    return _default_config_path()


def parse_scenarios(raw: dict | None) -> dict[str, ScenarioConfig]:
    """Turn a decoded YAML document into named scenario configs.

    Raises:
        KeyError: a scenario uses a field ScenarioConfig doesn't have.
        ValueError: the document is not shaped as a mapping of scenarios,
            or a scenario's values fail validation.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Scenario file must be a mapping, got {type(raw).__name__}")
    entries = raw.get("scenarios") or {}
    if not isinstance(entries, dict):
        raise ValueError(f"'scenarios' must be a mapping, got {type(entries).__name__}")

    scenarios = {}
    for name, params in entries.items():
        params = params or {}
        if not isinstance(params, dict):
            raise ValueError(f"Scenario {name!r} must be a mapping, got {type(params).__name__}")
        unknown = set(params) - _CONFIG_FIELDS
        if unknown:
            raise KeyError(f"Scenario {name!r} has unknown fields: {', '.join(sorted(unknown))}")
        if "n_clients" not in params:
            raise ValueError(f"Scenario {name!r} must set n_clients")
        try:
            scenarios[str(name)] = ScenarioConfig(**params)
        except TypeError as exc:
            raise ValueError(f"Scenario {name!r} has a field of the wrong type: {exc}") from exc
    return scenarios


def load_scenarios(config_path: str | None = None, required: bool = True) -> dict[str, ScenarioConfig]:
    """Load scenario definitions from a YAML file.

    Args:
        config_path: Explicit file path; falls back to the environment
            variable and then the project default.
        required: Whether a missing file is an error. When False a missing
            file yields no scenarios.

    Raises:
        FileNotFoundError: the file is missing and ``required`` is True.
        ValueError: the file is not valid YAML or describes invalid scenarios.
    """
    resolved_path = resolve_scenario_path(config_path)
    if not resolved_path.exists():
        if not required:
            return {}
        raise FileNotFoundError(
            f"Missing scenario file at {resolved_path}. "
            f"Pass --scenarios or set {ENV_VAR}."
        )

    with resolved_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ValueError(f"Scenario file {resolved_path} is not valid YAML: {exc}") from exc

    return parse_scenarios(raw)
