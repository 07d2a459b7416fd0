"""Provisioning a tagged group of nodes.

A call launches, waits, configures and relaunches until exactly ``count``
nodes are running and configured. Each cycle only asks for the shortfall;
nodes that never reach running or fail configuration are torn down and
replaced with fresh capacity on the next cycle.

Example:
    >>> nodes = provisioner.run("web", 3, template)
    >>> len(nodes)
    3
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from loguru import logger

from skytag.cancellation import CancellationToken
from skytag.catalog import resolve_region_zone
from skytag.configurator import ConfigureFailed, Configured, NodeConfigurator
from skytag.constants import (
    DEFAULT_MAX_WORKERS,
    INSTANCE_RUNNING_MAX_ATTEMPTS,
    INSTANCE_RUNNING_WAIT_DELAY,
    LAUNCH_MAX_CYCLES,
    LAUNCH_RETRY_DELAY,
    NodeState,
    SkytagTag,
)
from skytag.core.exceptions import (
    CancelledError,
    ProvisioningExhaustedError,
    SizeMismatchError,
    ValidationError,
)
from skytag.providers.aws.convert import running_instance_to_node_metadata
from skytag.providers.aws.resources import key_pair_factory, security_group_factory
from skytag.providers.protocols import EC2Boundary
from skytag.registry import ResourceRegistry
from skytag.retry import RetryPolicy
from skytag.teardown import GroupTeardown
from skytag.types import (
    Credentials,
    LaunchOptions,
    NodeMetadata,
    PortsRegionTag,
    RegionTag,
    Size,
    Tag,
    Template,
    validate_tag,
)
from skytag.utils.conc import map_async, settle_all
from skytag.waiter import InstanceStateWaiter

log = logger.bind(component="provisioner")


@dataclass(frozen=True, slots=True)
class _Placement:
    region: str
    zone: str | None
    tag: Tag
    template: Template
    options: LaunchOptions


class GroupProvisioner:
    def __init__(
        self,
        ec2: EC2Boundary,
        credentials: ResourceRegistry[RegionTag, Credentials],
        security_groups: ResourceRegistry[PortsRegionTag, str],
        waiter: InstanceStateWaiter,
        configurator: NodeConfigurator,
        teardown: GroupTeardown,
        running_policy: RetryPolicy = RetryPolicy(
            INSTANCE_RUNNING_MAX_ATTEMPTS, INSTANCE_RUNNING_WAIT_DELAY
        ),
        launch_policy: RetryPolicy = RetryPolicy(LAUNCH_MAX_CYCLES, LAUNCH_RETRY_DELAY),
        max_workers: int = DEFAULT_MAX_WORKERS,
        token: CancellationToken | None = None,
    ) -> None:
        self._ec2 = ec2
        self._credentials = credentials
        self._security_groups = security_groups
        self._waiter = waiter
        self._configurator = configurator
        self._teardown = teardown
        self._running_policy = running_policy
        self._launch_policy = launch_policy
        self._max_workers = max_workers
        self._token = token

    # =========================================================================
    # Public
    # =========================================================================

    def run(
        self,
        tag: Tag,
        count: int,
        template: Template,
        token: CancellationToken | None = None,
    ) -> frozenset[NodeMetadata]:
        """Provision exactly ``count`` running, configured nodes tagged ``tag``.

        Raises:
            InvalidTagError: Tag is empty or contains ``-``.
            ValidationError: ``count`` is below 1 or the location cannot host nodes.
            SizeMismatchError: ``template.size`` is not an EC2 Size.
            ProvisioningExhaustedError: Launch cycles ran out. Carries the nodes
                gathered so far, which stay running.
            CancelledError: ``token`` was cancelled.
        """
        validate_tag(tag)
        if count < 1:
            raise ValidationError(f"count must be at least 1, got {count}")
        if not isinstance(template.size, Size):
            raise SizeMismatchError(template.size)
        region, zone = resolve_region_zone(template.location)

        token = token or self._token or CancellationToken()
        token.raise_if_cancelled()

        with self._teardown.provisioning(region, tag):
            placement = self._prepare(region, zone, tag, template)
            return self._run_cycles(placement, count, token)

    # =========================================================================
    # Internals
    # =========================================================================

    def _prepare(self, region: str, zone: str | None, tag: Tag, template: Template) -> _Placement:
        options = template.options
        self._credentials.get_or_create(
            RegionTag(region, tag), key_pair_factory(self._ec2, options.login_user)
        )
        group = self._security_groups.get_or_create(
            PortsRegionTag(region, tag, options.inbound_ports), security_group_factory(self._ec2)
        )
        launch_options = LaunchOptions(
            instance_type=template.size.instance_type,
            key_name=tag,
            security_groups=(group,),
            user_data=tag,
            tags=MappingProxyType({SkytagTag.GROUP: tag}),
        )
        return _Placement(region, zone, tag, template, launch_options)

    def _run_cycles(self, p: _Placement, count: int, token: CancellationToken) -> frozenset[NodeMetadata]:
        nodes: set[NodeMetadata] = set()
        cycle = 0
        while len(nodes) < count:
            token.raise_if_cancelled()
            cycle += 1
            outstanding = count - len(nodes)
            log.debug(
                ">> running {n} instance region({region}) zone({zone}) tag({tag})",
                n=outstanding, region=p.region, zone=p.zone, tag=p.tag,
            )
            added = self._launch_cycle(p, outstanding, token)
            nodes |= added
            log.debug("<< cycle {cycle}: {ok}/{count} nodes ready", cycle=cycle, ok=len(nodes), count=count)

            if len(nodes) >= count:
                break
            if self._launch_policy.exhausted(cycle):
                raise ProvisioningExhaustedError(p.tag, count, nodes, cycle)
            if not added:
                token.sleep(self._launch_policy.period)

        log.info("provisioned {n} nodes with tag {tag}", n=len(nodes), tag=p.tag)
        return frozenset(nodes)

    def _launch_cycle(self, p: _Placement, outstanding: int, token: CancellationToken) -> set[NodeMetadata]:
        reservation = self._ec2.launch_instances(
            p.region, p.zone, p.template.image.id, 1, outstanding, p.options
        )
        if not reservation.ids:
            log.warning("launch for tag {tag} returned no instances", tag=p.tag)
            return set()
        log.debug("<< started instances {ids}", ids=reservation.ids)

        self._waiter.await_running(p.region, reservation.ids, self._running_policy, token)

        snapshot = [
            running_instance_to_node_metadata(i, self._credentials.get)
            for i in self._ec2.describe_instances(p.region, *reservation.ids)
        ]
        running = [n for n in snapshot if n.state == NodeState.RUNNING]
        failed = [n for n in snapshot if n.state != NodeState.RUNNING]
        if failed:
            log.warning(
                "instances never reached running: {ids}", ids=[n.id for n in failed],
            )

        options = p.template.options
        outcomes = list(map_async(
            lambda node: self._configurator.configure(node, options, token),
            running,
            self._max_workers,
        ))

        configured: set[NodeMetadata] = set()
        for outcome in outcomes:
            match outcome:
                case Configured(node=node):
                    configured.add(node)
                case ConfigureFailed(node=node):
                    failed.append(node)

        if failed:
            self._discard(failed, token)
        return configured

    def _discard(self, nodes: list[NodeMetadata], token: CancellationToken) -> None:
        log.debug(">> destroying {n} failed nodes", n=len(nodes))
        settled = settle_all(
            lambda node: self._teardown.destroy_node(node, token), nodes, self._max_workers
        )
        for outcome in settled:
            if isinstance(outcome.error, CancelledError):
                raise outcome.error
            # The node is already excluded from the result.
            if not outcome.ok:
                log.error(
                    "failed to destroy node {id}: {error}", id=outcome.item.id, error=outcome.error,
                )
