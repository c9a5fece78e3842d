# Copyright (c) Syntropy Systems
"""Configuration management for winnow."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, cast

import yaml

CONFIG_FILENAME = "config.yaml"


@dataclass
class WinnowConfig:
    """Configuration for winnow."""

    # Procedure used when an experiment file does not name one
    procedure: str = "kn"

    # Target probability of correct selection
    confidence_level: float = 0.95

    # Smallest meaningful difference; no default on purpose
    indifference_zone: Optional[float] = None

    # Maximum replications per scenario before the procedure stops
    replication_limit: int = 100

    # KN seed sample size
    min_replications: int = 10

    # GSP first-stage sample size, average batch size and stage-2 rounds
    first_stage_size: int = 20
    batch_size: int = 50
    rbar: int = 20

    # GSP splits screening into groups above this many scenarios
    group_threshold: int = 100

    # Threads for grouped screening (None = one per group)
    screening_workers: Optional[int] = None

    # Replications the local host runs at once
    workers: int = 4

    # Bound on results buffered between the host and a wave
    result_buffer: int = 64


_INT_KEYS = {
    "replication_limit",
    "min_replications",
    "first_stage_size",
    "batch_size",
    "rbar",
    "group_threshold",
    "screening_workers",
    "workers",
    "result_buffer",
}
_FLOAT_KEYS = {"confidence_level", "indifference_zone"}


def find_winnow_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .winnow directory by walking up from start_path.

    Returns None if no .winnow directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        winnow_dir = current / ".winnow"
        if winnow_dir.is_dir():
            return winnow_dir
        current = current.parent

    # Check root
    winnow_dir = current / ".winnow"
    if winnow_dir.is_dir():
        return winnow_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global winnow config directory (~/.winnow)."""
    return Path.home() / ".winnow"


def resolve_config_path(config_path: Path | None = None) -> Path | None:
    """Find the config file to load.

    Looks for config in:
    1. Provided config_path
    2. Nearest .winnow directory walking up
    3. ~/.winnow/config.yaml
    """
    if config_path is not None:
        return config_path

    found_dir = find_winnow_dir()
    if found_dir is not None:
        return found_dir / CONFIG_FILENAME

    global_config = get_global_config_dir() / CONFIG_FILENAME
    if global_config.exists():
        return global_config

    return None


def apply_config_values(config: WinnowConfig, data: dict[str, object]) -> WinnowConfig:
    """Copy recognised keys of the right type from data onto config."""
    for key, value in data.items():
        if key in _INT_KEYS:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(config, key, int(value))
        elif key in _FLOAT_KEYS:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(config, key, float(value))
        elif key == "procedure" and isinstance(value, str):
            config.procedure = value.lower()
    return config


def load_config(config_path: Path | None = None) -> WinnowConfig:
    """Load configuration from a config.yaml or defaults."""
    config = WinnowConfig()

    path = resolve_config_path(config_path)
    if path is not None and path.exists():
        with path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})
        apply_config_values(config, data)

    return config


def write_default_config(winnow_dir: Path) -> Path:
    """Write a config.yaml with the default values into winnow_dir."""
    winnow_dir.mkdir(parents=True, exist_ok=True)
    path = winnow_dir / CONFIG_FILENAME
    data = asdict(WinnowConfig())
    with path.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return path

