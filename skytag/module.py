"""Central DI module for skytag.

Wires the EC2 boundary, the two shared-resource registries, and the
orchestration components into an EC2ComputeService. Registries are
singletons: every provisioning and teardown call of one service sees the
same credentials and security groups.
"""

from __future__ import annotations

from injector import Binder, Injector, Module, provider, singleton

from skytag.config import Settings, load_settings
from skytag.configurator import NodeConfigurator, RunnerFactory, ssh_runner_factory
from skytag.logging import setup_logging
from skytag.providers.aws.ec2 import BotoEC2
from skytag.providers.protocols import EC2Boundary
from skytag.provisioner import GroupProvisioner
from skytag.registry import ResourceRegistry
from skytag.service import EC2ComputeService
from skytag.teardown import GroupTeardown
from skytag.types import Credentials, PortsRegionTag, RegionTag
from skytag.waiter import InstanceStateWaiter


class CredentialsRegistry(ResourceRegistry[RegionTag, Credentials]):
    """Key pair credentials per (region, tag)."""

    def __init__(self) -> None:
        super().__init__("credentials")


class SecurityGroupRegistry(ResourceRegistry[PortsRegionTag, str]):
    """Security group names per (region, tag, ports)."""

    def __init__(self) -> None:
        super().__init__("security-groups")


class SkytagModule(Module):
    """Core module providing the service graph.

    Usage:
        injector = Injector([SkytagModule(settings)])
        service = injector.get(EC2ComputeService)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        ec2: EC2Boundary | None = None,
        runner_factory: RunnerFactory = ssh_runner_factory,
    ) -> None:
        self._settings = settings or Settings()
        self._ec2 = ec2
        self._runner_factory = runner_factory

    def configure(self, binder: Binder) -> None:
        binder.bind(Settings, to=self._settings)

    @singleton
    @provider
    def provide_ec2(self) -> EC2Boundary:
        return self._ec2 if self._ec2 is not None else BotoEC2()

    @singleton
    @provider
    def provide_credentials(self) -> CredentialsRegistry:
        return CredentialsRegistry()

    @singleton
    @provider
    def provide_security_groups(self) -> SecurityGroupRegistry:
        return SecurityGroupRegistry()

    @singleton
    @provider
    def provide_waiter(self, ec2: EC2Boundary) -> InstanceStateWaiter:
        return InstanceStateWaiter(ec2)

    @singleton
    @provider
    def provide_configurator(self) -> NodeConfigurator:
        return NodeConfigurator(self._runner_factory)

    @singleton
    @provider
    def provide_teardown(
        self,
        ec2: EC2Boundary,
        credentials: CredentialsRegistry,
        security_groups: SecurityGroupRegistry,
        waiter: InstanceStateWaiter,
        settings: Settings,
    ) -> GroupTeardown:
        return GroupTeardown(
            ec2,
            credentials,
            security_groups,
            waiter,
            regions=settings.regions,
            termination_policy=settings.termination_policy,
            terminate_cycles=settings.terminate_cycles,
            max_workers=settings.max_workers,
        )

    @singleton
    @provider
    def provide_provisioner(
        self,
        ec2: EC2Boundary,
        credentials: CredentialsRegistry,
        security_groups: SecurityGroupRegistry,
        waiter: InstanceStateWaiter,
        configurator: NodeConfigurator,
        teardown: GroupTeardown,
        settings: Settings,
    ) -> GroupProvisioner:
        return GroupProvisioner(
            ec2,
            credentials,
            security_groups,
            waiter,
            configurator,
            teardown,
            running_policy=settings.running_policy,
            launch_policy=settings.launch_policy,
            max_workers=settings.max_workers,
        )

    @singleton
    @provider
    def provide_service(
        self,
        ec2: EC2Boundary,
        settings: Settings,
        provisioner: GroupProvisioner,
        teardown: GroupTeardown,
        credentials: CredentialsRegistry,
    ) -> EC2ComputeService:
        return EC2ComputeService(ec2, settings, provisioner, teardown, credentials)


def create_service(
    settings: Settings | None = None,
    ec2: EC2Boundary | None = None,
    runner_factory: RunnerFactory = ssh_runner_factory,
) -> EC2ComputeService:
    """Build a service from ``settings`` (TOML files when omitted)."""
    settings = settings or load_settings()
    if settings.logging is not None:
        setup_logging(settings.logging)
    return Injector([SkytagModule(settings, ec2, runner_factory)]).get(EC2ComputeService)


__all__ = [
    "CredentialsRegistry",
    "SecurityGroupRegistry",
    "SkytagModule",
    "create_service",
]
