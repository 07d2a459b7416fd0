"""TOML-based settings.

Loads ~/.skytag/defaults.toml (global) and skytag.toml (project), merges
them, and builds a validated Settings.

Example skytag.toml:

    regions = ["us-east-1", "eu-west-1"]
    max_workers = 20
    image_owners = ["amazon", "self"]

    [running]
    max_attempts = 300
    period = 2.0

    [launch]
    max_attempts = "unbounded"
    period = 5.0

    [logging]
    level = "DEBUG"
    file = "skytag.log"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from skytag.constants import (
    DEFAULT_LOGIN_USER,
    DEFAULT_MAX_WORKERS,
    INSTANCE_RUNNING_MAX_ATTEMPTS,
    INSTANCE_RUNNING_WAIT_DELAY,
    INSTANCE_TERMINATED_MAX_ATTEMPTS,
    INSTANCE_TERMINATED_WAIT_DELAY,
    LAUNCH_MAX_CYCLES,
    LAUNCH_RETRY_DELAY,
    SUPPORTED_REGIONS,
    TERMINATE_MAX_CYCLES,
)
from skytag.core.exceptions import ConfigurationError
from skytag.logging import LOG_LEVELS, LogConfig
from skytag.retry import RetryPolicy

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".skytag" / "defaults.toml"
PROJECT_CONFIG_NAME = "skytag.toml"

UNBOUNDED = "unbounded"

_POLICY_SECTIONS = ("running", "termination", "terminate_cycles", "launch")


@dataclass(frozen=True, slots=True)
class Settings:
    """Service-wide settings.

    Args:
        regions: Regions enumerated by get_nodes() and destroy_nodes_with_tag().
        max_workers: Bound on concurrent configure/destroy tasks.
        running_policy: Polling budget while waiting for instances to run.
        termination_policy: Polling budget inside one terminate cycle.
        terminate_cycles: How many times terminate is re-issued.
        launch_policy: Launch cycles per provisioning call, and the delay
            after a cycle that made no progress.
        image_owners: Owners passed to describe_images by get_images().
        login_user: Default SSH user.
        logging: Enable logging with this config. None leaves it disabled.
    """

    regions: tuple[str, ...] = SUPPORTED_REGIONS
    max_workers: int = DEFAULT_MAX_WORKERS
    running_policy: RetryPolicy = RetryPolicy(INSTANCE_RUNNING_MAX_ATTEMPTS, INSTANCE_RUNNING_WAIT_DELAY)
    termination_policy: RetryPolicy = RetryPolicy(INSTANCE_TERMINATED_MAX_ATTEMPTS, INSTANCE_TERMINATED_WAIT_DELAY)
    terminate_cycles: RetryPolicy = RetryPolicy(TERMINATE_MAX_CYCLES, 0.0)
    launch_policy: RetryPolicy = RetryPolicy(LAUNCH_MAX_CYCLES, LAUNCH_RETRY_DELAY)
    image_owners: tuple[str, ...] = ("amazon",)
    login_user: str = DEFAULT_LOGIN_USER
    logging: LogConfig | None = None

    def __post_init__(self) -> None:
        if not self.regions:
            raise ConfigurationError("at least one region is required")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    return _deep_merge(global_cfg, project_cfg)


def _build_policy(name: str, raw: RawConfig, default: RetryPolicy) -> RetryPolicy:
    unknown = set(raw) - {"max_attempts", "period"}
    if unknown:
        raise ConfigurationError(f"unknown keys in [{name}]: {', '.join(sorted(unknown))}")

    max_attempts = raw.get("max_attempts", default.max_attempts)
    if max_attempts == UNBOUNDED:
        max_attempts = None
    try:
        return RetryPolicy(max_attempts=max_attempts, period=float(raw.get("period", default.period)))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid [{name}]: {e}") from e


def _build_logging(raw: RawConfig) -> LogConfig:
    level = str(raw.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ConfigurationError(f"invalid log level {level!r}. Valid: {', '.join(LOG_LEVELS)}")
    try:
        return LogConfig(**{**raw, "level": level})
    except TypeError as e:
        raise ConfigurationError(f"invalid [logging]: {e}") from e


def build_settings(raw: RawConfig) -> Settings:
    """Validated Settings from a merged raw config."""
    raw = dict(raw)
    defaults = Settings()

    policies = {
        section: _build_policy(section, raw.pop(section, {}), default)
        for section, default in zip(
            _POLICY_SECTIONS,
            (defaults.running_policy, defaults.termination_policy,
             defaults.terminate_cycles, defaults.launch_policy),
            strict=True,
        )
    }
    raw_logging = raw.pop("logging", None)

    kwargs: dict[str, Any] = {}
    for key in ("regions", "image_owners"):
        if key in raw:
            kwargs[key] = tuple(raw.pop(key))
    for key in ("max_workers", "login_user"):
        if key in raw:
            kwargs[key] = raw.pop(key)
    if raw:
        raise ConfigurationError(f"unknown settings: {', '.join(sorted(raw))}")

    return Settings(
        running_policy=policies["running"],
        termination_policy=policies["termination"],
        terminate_cycles=policies["terminate_cycles"],
        launch_policy=policies["launch"],
        logging=_build_logging(raw_logging) if raw_logging is not None else None,
        **kwargs,
    )


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    return build_settings(load_config(project_dir=project_dir, global_path=global_path))
