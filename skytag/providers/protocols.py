"""Provider boundary consumed by the orchestrator.

Every call is region-scoped and synchronous. Implementations translate
API failures into ``ProviderError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from skytag.types import Image, LaunchOptions, Reservation, RunningInstance


@runtime_checkable
class EC2Boundary(Protocol):
    """The slice of EC2 that tagged node groups need."""

    def launch_instances(
        self,
        region: str,
        zone: str | None,
        image_id: str,
        min_count: int,
        max_count: int,
        options: LaunchOptions,
    ) -> Reservation: ...

    def describe_instances(self, region: str, *ids: str) -> Sequence[RunningInstance]:
        """Describe ``ids`` in ``region``; every instance when none are given."""
        ...

    def terminate_instances(self, region: str, *ids: str) -> None: ...

    # -- security groups ------------------------------------------------------

    def describe_security_groups(self, region: str, name: str) -> Sequence[str]:
        """Ids of groups named ``name``; empty when none exist."""
        ...

    def create_security_group(self, region: str, name: str, description: str) -> str: ...

    def authorize_ingress(self, region: str, name: str, port: int, cidr: str = "0.0.0.0/0") -> None: ...

    def delete_security_group(self, region: str, name: str) -> None: ...

    # -- key pairs ------------------------------------------------------------

    def describe_key_pairs(self, region: str, name: str) -> Sequence[str]:
        """Names of key pairs called ``name``; empty when none exist."""
        ...

    def create_key_pair(self, region: str, name: str) -> str:
        """Create a key pair and return its private key material."""
        ...

    def delete_key_pair(self, region: str, name: str) -> None: ...

    # -- images ---------------------------------------------------------------

    def describe_images(self, region: str, owners: Sequence[str]) -> Sequence[Image]: ...
