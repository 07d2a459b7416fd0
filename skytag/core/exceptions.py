"""Custom exception hierarchy for skytag.

All skytag-specific exceptions inherit from SkytagError, enabling
users to catch all skytag exceptions with a single except clause.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skytag.types import NodeMetadata


class SkytagError(Exception):
    """Base exception for all skytag errors."""


class ValidationError(SkytagError, ValueError):
    """Raised before any provider call when a request is malformed."""


class InvalidTagError(ValidationError):
    """Raised when a group tag is empty or contains the reserved separator."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"tag cannot be empty or contain hyphens: {tag!r}")


class SizeMismatchError(ValidationError):
    """Raised when a template size is not an EC2 size."""

    def __init__(self, size: object) -> None:
        self.size = size
        super().__init__(
            f"unexpected size type. should be Size, was: {type(size).__name__}"
        )


class ConfigurationError(SkytagError):
    """Raised for invalid configuration or missing required settings."""


class ProviderError(SkytagError):
    """Raised when the EC2 API rejects or fails a call."""

    def __init__(self, operation: str, code: str, message: str = "") -> None:
        self.operation = operation
        self.code = code
        text = f"{operation} failed [{code}]"
        super().__init__(f"{text}: {message}" if message else text)

    @property
    def not_found(self) -> bool:
        return self.code.endswith(".NotFound") or self.code.endswith("NotFound")


class ProvisioningError(SkytagError):
    """Raised when instance provisioning fails."""


class ProvisioningExhaustedError(ProvisioningError):
    """Raised when the launch-cycle budget runs out before count was met.

    The nodes gathered so far are left running and handed back to the caller.
    """

    def __init__(self, tag: str, requested: int, nodes: Iterable[NodeMetadata], cycles: int) -> None:
        self.tag = tag
        self.requested = requested
        self.nodes = frozenset(nodes)
        self.cycles = cycles
        super().__init__(
            f"provisioning failed for tag {tag!r}: {len(self.nodes)}/{requested} nodes "
            f"after {cycles} launch cycles"
        )


class NodeConfigurationError(SkytagError):
    """Raised when post-boot configuration of a node fails."""

    def __init__(self, node_id: str, reason: str) -> None:
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"configuration failed on {node_id}: {reason}")


class TerminationExhaustedError(SkytagError):
    """Raised when an instance could not be confirmed terminated - do not retry."""

    def __init__(self, instance_id: str, cycles: int) -> None:
        self.instance_id = instance_id
        self.cycles = cycles
        super().__init__(f"instance {instance_id} not terminated after {cycles} terminate cycles")


class NodeNotFoundError(SkytagError, LookupError):
    """Raised when no instance matches a node id."""

    def __init__(self, node_id: str, region: str) -> None:
        self.node_id = node_id
        self.region = region
        super().__init__(f"node {node_id} not found in {region}")


class AmbiguousNodeError(SkytagError, LookupError):
    """Raised when more than one instance matches a node id."""

    def __init__(self, node_id: str, count: int) -> None:
        self.node_id = node_id
        self.count = count
        super().__init__(f"expected one instance for {node_id}, found {count}")


class CancelledError(SkytagError):
    """Raised at a suspension point once the caller cancelled the operation."""
