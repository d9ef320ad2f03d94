"""TOML config loading for nudo.toml."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_NAME = "nudo.toml"


@dataclass
class AnalysisConfig:
    timeout: float = 5.0
    recursion_limit: int = 16
    fixpoint_iterations: int = 8
    sample_count: int = 3
    max_samples: int = 32
    jobs: int = field(default_factory=lambda: min(8, os.cpu_count() or 1))


@dataclass
class BuildConfig:
    include: list[str] = field(default_factory=lambda: ["**/*.py"])
    exclude: list[str] = field(default_factory=list)
    fail_on_error: bool = False


@dataclass
class NudoConfig:
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    build: BuildConfig = field(default_factory=BuildConfig)


class ConfigError(Exception):
    """nudo.toml holds a value of the wrong type."""


def find_config(start_path: Path | None = None) -> Path:
    """Walk up directories to find nudo.toml. Raises FileNotFoundError."""
    path = (start_path or Path.cwd()).resolve()
    if path.is_file():
        path = path.parent
    while True:
        candidate = path / CONFIG_NAME
        if candidate.exists():
            return candidate
        parent = path.parent
        if parent == path:
            raise FileNotFoundError(f"No {CONFIG_NAME} found in any parent directory")
        path = parent


def _get(section: dict, key: str, default, kind: type | tuple[type, ...]):
    value = section.get(key, default)
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"'{key}' must be {_kind_name(kind)}, got a boolean")
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' must be {_kind_name(kind)}, got {type(value).__name__}")
    return value


def _kind_name(kind: type | tuple[type, ...]) -> str:
    kinds = kind if isinstance(kind, tuple) else (kind,)
    return " or ".join(k.__name__ for k in kinds)


def load_config(path: Path) -> NudoConfig:
    """Parse a nudo.toml file into a NudoConfig."""
    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(str(e)) from e

    config = NudoConfig()
    defaults = AnalysisConfig()

    if "analysis" in data:
        sec = data["analysis"]
        config.analysis = AnalysisConfig(
            timeout=float(_get(sec, "timeout", defaults.timeout, (int, float))),
            recursion_limit=_get(sec, "recursion_limit", defaults.recursion_limit, int),
            fixpoint_iterations=_get(sec, "fixpoint_iterations", defaults.fixpoint_iterations, int),
            sample_count=_get(sec, "sample_count", defaults.sample_count, int),
            max_samples=_get(sec, "max_samples", defaults.max_samples, int),
            jobs=max(1, _get(sec, "jobs", defaults.jobs, int)),
        )

    if "build" in data:
        bld = data["build"]
        config.build = BuildConfig(
            include=list(_get(bld, "include", ["**/*.py"], list)),
            exclude=list(_get(bld, "exclude", [], list)),
            fail_on_error=_get(bld, "fail_on_error", False, bool),
        )

    return config


def resolve_config(start_path: Path | None = None) -> NudoConfig:
    """Load the nearest nudo.toml, or defaults when there is none."""
    try:
        return load_config(find_config(start_path))
    except FileNotFoundError:
        return NudoConfig()
