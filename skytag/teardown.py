"""Node teardown and cascading deletion of a tag's shared resources.

When the last node of a tag in a region is confirmed terminated, the tag's
security group and key pair in that region are deleted and dropped from the
registries. Cascades for one ``(region, tag)`` run under a lock shared with
in-flight provisioning calls, so a group that is being grown never loses its
key pair or security group mid-launch.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from loguru import logger

from skytag.cancellation import CancellationToken
from skytag.catalog import build_locations, region_of
from skytag.constants import (
    DEFAULT_MAX_WORKERS,
    INSTANCE_TERMINATED_MAX_ATTEMPTS,
    INSTANCE_TERMINATED_WAIT_DELAY,
    SUPPORTED_REGIONS,
    TERMINATE_MAX_CYCLES,
    NodeState,
)
from skytag.core.exceptions import ValidationError
from skytag.providers.aws.convert import running_instance_to_node_metadata, tag_of
from skytag.providers.aws.resources import delete_key_pair, delete_security_group
from skytag.providers.protocols import EC2Boundary
from skytag.registry import ResourceRegistry
from skytag.retry import RetryPolicy
from skytag.types import (
    Credentials,
    Location,
    NodeMetadata,
    PortsRegionTag,
    RegionTag,
    RunningInstance,
    Tag,
    validate_tag,
)
from skytag.utils.conc import raise_first, settle_all
from skytag.waiter import InstanceStateWaiter

log = logger.bind(component="teardown")


@dataclass(frozen=True, slots=True)
class CascadeResult:
    security_group_deleted: bool = False
    key_pair_deleted: bool = False


class GroupTeardown:
    """Destroys nodes and cleans up after the last one of a tag."""

    def __init__(
        self,
        ec2: EC2Boundary,
        credentials: ResourceRegistry[RegionTag, Credentials],
        security_groups: ResourceRegistry[PortsRegionTag, str],
        waiter: InstanceStateWaiter,
        regions: Sequence[str] = SUPPORTED_REGIONS,
        termination_policy: RetryPolicy = RetryPolicy(
            INSTANCE_TERMINATED_MAX_ATTEMPTS, INSTANCE_TERMINATED_WAIT_DELAY
        ),
        terminate_cycles: RetryPolicy = RetryPolicy(TERMINATE_MAX_CYCLES, 0.0),
        max_workers: int = DEFAULT_MAX_WORKERS,
        locations: Mapping[str, Location] | None = None,
    ) -> None:
        self._ec2 = ec2
        self._credentials = credentials
        self._security_groups = security_groups
        self._waiter = waiter
        self._regions = tuple(regions)
        self._termination_policy = termination_policy
        self._terminate_cycles = terminate_cycles
        self._max_workers = max_workers
        self._locations = locations if locations is not None else build_locations(self._regions)

        self._region_locks: ResourceRegistry[RegionTag, threading.Lock] = ResourceRegistry("cascade-locks")
        # Guarded by the matching region lock.
        self._in_flight: dict[RegionTag, int] = {}

    def _lock(self, key: RegionTag) -> threading.Lock:
        return self._region_locks.get_or_create(key, lambda _: threading.Lock())

    @contextmanager
    def provisioning(self, region: str, tag: Tag) -> Iterator[None]:
        """Hold off cascades for ``(region, tag)`` while nodes are being added."""
        key = RegionTag(region, tag)
        with self._lock(key):
            self._in_flight[key] = self._in_flight.get(key, 0) + 1
        try:
            yield
        finally:
            with self._lock(key):
                remaining = self._in_flight[key] - 1
                if remaining:
                    self._in_flight[key] = remaining
                else:
                    del self._in_flight[key]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def nodes_with_tag(self, region: str, tag: Tag) -> list[RunningInstance]:
        return [i for i in self._ec2.describe_instances(region) if tag_of(i) == tag]

    def all_terminated(self, region: str, tag: Tag) -> bool:
        return all(i.node_state == NodeState.TERMINATED for i in self.nodes_with_tag(region, tag))

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def cascade(self, region: str, tag: Tag) -> CascadeResult:
        """Delete the tag's security group and key pair in ``region``.

        Skipped while a provisioning call for the same ``(region, tag)`` is in
        flight, or when a node of the tag is not confirmed terminated. Safe to
        call repeatedly: deletion is existence-checked.
        """
        key = RegionTag(region, tag)
        with self._lock(key):
            if self._in_flight.get(key):
                log.debug("skipping cascade for {key}: provisioning in flight", key=key)
                return CascadeResult()
            if not self.all_terminated(region, tag):
                log.debug("skipping cascade for {key}: live nodes remain", key=key)
                return CascadeResult()

            log.debug(">> deleting resources for tag({tag}) region({region})", tag=tag, region=region)
            sg_deleted = delete_security_group(self._ec2, region, tag)
            self._security_groups.remove_matching(PortsRegionTag(region, tag).matches)

            kp_deleted = delete_key_pair(self._ec2, region, tag)
            self._credentials.remove(key)

        result = CascadeResult(security_group_deleted=sg_deleted, key_pair_deleted=kp_deleted)
        log.debug("<< deleted resources for tag({tag}) region({region}) {result}", tag=tag, region=region, result=result)
        return result

    def destroy_node(self, node: NodeMetadata, token: CancellationToken | None = None) -> CascadeResult | None:
        """Terminate one node; cascade if it was the last live node of its tag.

        Returns the cascade result, or None when other nodes of the tag remain.
        """
        if not node.tag:
            raise ValidationError(f"node {node.id} has no tag")
        region = region_of(node.location_id, self._locations)

        log.debug(">> destroying node({id}) tag({tag}) region({region})", id=node.id, tag=node.tag, region=region)
        described = self._ec2.describe_instances(region, node.id)
        if any(i.node_state != NodeState.TERMINATED for i in described):
            self._waiter.await_terminated(
                region, node.id, self._termination_policy, self._terminate_cycles, token
            )
        log.debug("<< destroyed node({id})", id=node.id)

        if self.all_terminated(region, node.tag):
            return self.cascade(region, node.tag)
        return None

    def destroy_nodes_with_tag(self, tag: Tag, token: CancellationToken | None = None) -> frozenset[str]:
        """Destroy every live node of ``tag`` across regions, in parallel.

        All destroys run to completion before the first failure is re-raised.
        Regions with no live nodes still get their leftover resources swept.
        Returns the ids of the nodes destroyed.
        """
        validate_tag(tag)
        token = token or CancellationToken()

        live: list[NodeMetadata] = []
        idle_regions: list[str] = []
        for region in self._regions:
            token.raise_if_cancelled()
            nodes = [
                running_instance_to_node_metadata(i)
                for i in self.nodes_with_tag(region, tag)
                if i.node_state != NodeState.TERMINATED
            ]
            if nodes:
                live.extend(nodes)
            else:
                idle_regions.append(region)

        log.info("destroying {n} nodes with tag {tag}", n=len(live), tag=tag)
        settled = settle_all(lambda node: self.destroy_node(node, token), live, self._max_workers)
        raise_first(settled)

        for region in idle_regions:
            self.cascade(region, tag)

        return frozenset(s.item.id for s in settled)
