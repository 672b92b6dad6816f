"""
Named scenarios runnable from the command line.

Generic scenarios are ``ScenarioConfig`` presets for the phase machine in
``scenario.py``; standalone scenarios are the scripted functions in
``scenarios.py``. Both are looked up by name and run against a cluster
factory with optional timing overrides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .interfaces import ClusterFactory
from .scenario import ScenarioConfig, ScenarioResult, run_generic
from .scenarios import one_partition, snapshot_rpc, snapshot_size, unreliable_one_key

# Catalog presets give up on hung sessions after this long; ad hoc
# configurations keep the unbounded default.
SESSION_TIMEOUT = 600.0


def _preset(**params) -> ScenarioConfig:
    params.setdefault("session_timeout", SESSION_TIMEOUT)
    return ScenarioConfig(**params)


GENERIC_SCENARIOS: dict[str, ScenarioConfig] = {
    "concurrent_3a": _preset(n_clients=2, part="3A"),
    "unreliable_3a": _preset(n_clients=5, part="3A", unreliable=True),
    "many_partitions_one_client_3a": _preset(n_clients=1, part="3A", partitions=True),
    "many_partitions_many_clients_3a": _preset(n_clients=5, part="3A", partitions=True),
    "persist_one_client_3a": _preset(n_clients=1, part="3A", crash=True),
    "persist_concurrent_3a": _preset(n_clients=5, part="3A", crash=True),
    "persist_concurrent_unreliable_3a": _preset(
        n_clients=5, part="3A", unreliable=True, crash=True
    ),
    "persist_partition_3a": _preset(n_clients=5, part="3A", crash=True, partitions=True),
    "persist_partition_unreliable_3a": _preset(
        n_clients=5, part="3A", unreliable=True, crash=True, partitions=True
    ),
    "snapshot_recover_3b": _preset(
        n_clients=1, part="3B", crash=True, max_state_size=1000
    ),
    "snapshot_recover_many_clients_3b": _preset(
        n_clients=20, part="3B", crash=True, max_state_size=1000
    ),
    "snapshot_unreliable_3b": _preset(
        n_clients=5, part="3B", unreliable=True, max_state_size=1000
    ),
    "snapshot_unreliable_recover_3b": _preset(
        n_clients=5, part="3B", unreliable=True, crash=True, max_state_size=1000
    ),
    "snapshot_unreliable_recover_concurrent_partition_3b": _preset(
        n_clients=5, part="3B", unreliable=True, crash=True, partitions=True, max_state_size=1000
    ),
    "lock_contention_3a": _preset(n_clients=2, part="3A", workload="lock_contention"),
}


@dataclass(frozen=True)
class Overrides:
    """Timing overrides applied to every scenario run from the catalog."""

    election_timeout: float | None = None
    seed: int | None = None


def _standalone(fn: Callable[..., ScenarioResult], timed: bool) -> Callable:
    def run(cluster_factory: ClusterFactory, overrides: Overrides) -> ScenarioResult:
        if timed and overrides.election_timeout is not None:
            return fn(cluster_factory, election_timeout=overrides.election_timeout)
        return fn(cluster_factory)

    return run


STANDALONE_SCENARIOS: dict[str, Callable[[ClusterFactory, Overrides], ScenarioResult]] = {
    "unreliable_one_key_3a": _standalone(unreliable_one_key, timed=False),
    "one_partition_3a": _standalone(one_partition, timed=True),
    "snapshot_rpc_3b": _standalone(snapshot_rpc, timed=True),
    "snapshot_size_3b": _standalone(snapshot_size, timed=False),
}


def scenario_names(extra: dict[str, ScenarioConfig] | None = None) -> list[str]:
    """Every runnable scenario name, sorted."""
    names = set(GENERIC_SCENARIOS) | set(STANDALONE_SCENARIOS) | set(extra or {})
    return sorted(names)


def run_named(
    name: str,
    cluster_factory: ClusterFactory,
    overrides: Overrides | None = None,
    extra: dict[str, ScenarioConfig] | None = None,
    log_events: bool = False,
) -> ScenarioResult:
    """Run the scenario called ``name``.

    ``extra`` holds scenarios loaded from a file; they shadow built-in
    generic presets of the same name.

    Raises:
        KeyError: no scenario has that name.
    """
    overrides = overrides or Overrides()
    generic = dict(GENERIC_SCENARIOS)
    generic.update(extra or {})

    if name in generic:
        config = generic[name]
        changes = {}
        if overrides.election_timeout is not None:
            changes["election_timeout"] = overrides.election_timeout
        if overrides.seed is not None:
            changes["seed"] = overrides.seed
        if changes:
            config = config.with_overrides(**changes)
        return run_generic(config, cluster_factory, log_events=log_events)

    if name in STANDALONE_SCENARIOS:
        return STANDALONE_SCENARIOS[name](cluster_factory, overrides)

    raise KeyError(f"Unknown scenario {name!r}; known: {', '.join(scenario_names(extra))}")
