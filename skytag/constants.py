"""Centralized constants and enums for skytag.

All magic strings, region lists, and timing defaults are defined here
to ensure consistency and enable type-safe usage throughout the codebase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Tags
# =============================================================================

TAG_SEPARATOR: Final = "-"
"""Reserved in tags: node names and compound keys use it to join parts."""


class SkytagTag(StrEnum):
    """AWS resource tag keys used by skytag."""

    GROUP = "skytag:group"


# =============================================================================
# Node / Location States
# =============================================================================


class NodeState(StrEnum):
    """Portable node lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def from_ec2(cls, name: str | None) -> NodeState:
        """Map an EC2 instance-state name to a portable state."""
        return _EC2_STATES.get(name or "", cls.UNKNOWN)


_EC2_STATES: Final[dict[str, NodeState]] = {
    "pending": NodeState.PENDING,
    "running": NodeState.RUNNING,
    "stopping": NodeState.SUSPENDED,
    "stopped": NodeState.SUSPENDED,
    "shutting-down": NodeState.PENDING,
    "terminated": NodeState.TERMINATED,
}


class LocationScope(StrEnum):
    PROVIDER = "provider"
    REGION = "region"
    ZONE = "zone"


# =============================================================================
# Regions
# =============================================================================

PROVIDER_ID: Final = "aws-ec2"

SUPPORTED_REGIONS: Final[tuple[str, ...]] = ("us-east-1", "us-west-1", "eu-west-1")
"""Regions enumerated by get_nodes() unless overridden in settings."""

ZONE_SUFFIXES: Final[tuple[str, ...]] = ("a", "b", "c")


# =============================================================================
# Timing Defaults (seconds)
# =============================================================================

INSTANCE_RUNNING_WAIT_DELAY: Final = 2.0
INSTANCE_RUNNING_MAX_ATTEMPTS: Final = 300

INSTANCE_TERMINATED_WAIT_DELAY: Final = 2.0
INSTANCE_TERMINATED_MAX_ATTEMPTS: Final = 60
TERMINATE_MAX_CYCLES: Final = 10

LAUNCH_RETRY_DELAY: Final = 5.0
LAUNCH_MAX_CYCLES: Final = 10

SSH_PORT: Final = 22
SSH_READY_TIMEOUT: Final = 300
SCRIPT_TIMEOUT: Final = 600

DEFAULT_MAX_WORKERS: Final = 10
DEFAULT_LOGIN_USER: Final = "ubuntu"
