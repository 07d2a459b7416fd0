"""Domain types for tagged node groups.

Everything here is an immutable value. Provider descriptions are parsed into
these types once at the boundary and never re-inspected downstream.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Literal

from skytag.constants import (
    DEFAULT_LOGIN_USER,
    SCRIPT_TIMEOUT,
    SSH_PORT,
    SSH_READY_TIMEOUT,
    TAG_SEPARATOR,
    LocationScope,
    NodeState,
)
from skytag.core.exceptions import InvalidTagError, ValidationError

type Tag = str


def validate_tag(tag: Tag) -> Tag:
    """Reject empty tags and tags containing the reserved separator."""
    if not tag or TAG_SEPARATOR in tag:
        raise InvalidTagError(tag)
    return tag


def normalize_ports(ports: Iterable[int]) -> tuple[int, ...]:
    """Sorted, de-duplicated port tuple. Port 22 is always included."""
    normalized = {SSH_PORT}
    for port in ports:
        if not 0 < int(port) < 65536:
            raise ValidationError(f"invalid inbound port: {port}")
        normalized.add(int(port))
    return tuple(sorted(normalized))


# =============================================================================
# Catalog Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class Location:
    """A place nodes can run in. Zones have their region as parent."""

    id: str
    scope: LocationScope
    description: str = ""
    parent: str | None = None
    kind: Literal["location"] = field(default="location", init=False, repr=False)


@dataclass(frozen=True, slots=True)
class Size:
    """EC2-concrete hardware size."""

    id: str
    instance_type: str
    cores: float
    ram_mb: int
    disk_gb: int = 0
    kind: Literal["size"] = field(default="size", init=False, repr=False)


@dataclass(frozen=True, slots=True)
class Image:
    id: str
    region: str
    name: str = ""
    architecture: str = "x86_64"
    description: str = ""
    kind: Literal["image"] = field(default="image", init=False, repr=False)


@dataclass(frozen=True, slots=True)
class TemplateOptions:
    """Per-node options applied after boot.

    Args:
        inbound_ports: Ports opened in the group's security group. 22 is always open.
        run_script: Shell script executed over SSH on every node. None skips it.
        login_user: SSH user for the image.
        ssh_timeout: Seconds to wait for SSH to accept connections.
        script_timeout: Seconds the script may run.
    """

    inbound_ports: tuple[int, ...] = (SSH_PORT,)
    run_script: str | None = None
    login_user: str = DEFAULT_LOGIN_USER
    ssh_timeout: float = SSH_READY_TIMEOUT
    script_timeout: float = SCRIPT_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "inbound_ports", normalize_ports(self.inbound_ports))


@dataclass(frozen=True, slots=True)
class Template:
    """What to launch and where."""

    image: Image
    size: Size
    location: Location
    options: TemplateOptions = field(default_factory=TemplateOptions)


# =============================================================================
# Ancillary Resource Keys
# =============================================================================


@dataclass(frozen=True, slots=True)
class RegionTag:
    """Key of the key pair shared by a tag within a region."""

    region: str
    tag: Tag

    @property
    def name(self) -> str:
        return self.tag


@dataclass(frozen=True, slots=True)
class PortsRegionTag:
    """Key of the security group shared by a tag within a region.

    ``ports=None`` is a wildcard, matching every port set of the same
    ``(region, tag)``.
    """

    region: str
    tag: Tag
    ports: tuple[int, ...] | None = None

    @property
    def name(self) -> str:
        return self.tag

    @property
    def region_tag(self) -> RegionTag:
        return RegionTag(self.region, self.tag)

    def matches(self, other: PortsRegionTag) -> bool:
        if (self.region, self.tag) != (other.region, other.tag):
            return False
        return self.ports is None or other.ports is None or self.ports == other.ports


@dataclass(frozen=True, slots=True)
class Credentials:
    """Login credentials. ``key`` is either a password or a private key."""

    user: str
    key: str = field(repr=False)

    @property
    def is_private_key(self) -> bool:
        return self.key.startswith("-----BEGIN")


# =============================================================================
# Provider Descriptions
# =============================================================================


@dataclass(frozen=True, slots=True)
class RunningInstance:
    """One EC2 instance as described by the provider."""

    id: str
    region: str
    state: str
    availability_zone: str = ""
    image_id: str = ""
    instance_type: str = ""
    key_name: str | None = None
    security_groups: tuple[str, ...] = ()
    public_ip: str | None = None
    private_ip: str | None = None
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)
    launch_time: datetime | None = None

    @property
    def node_state(self) -> NodeState:
        return NodeState.from_ec2(self.state)


@dataclass(frozen=True, slots=True)
class Reservation:
    id: str
    region: str
    instances: tuple[RunningInstance, ...] = ()

    def __iter__(self):
        return iter(self.instances)

    def __len__(self) -> int:
        return len(self.instances)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(i.id for i in self.instances)


@dataclass(frozen=True, slots=True)
class LaunchOptions:
    """Parameters shared by every instance of one launch request."""

    instance_type: str
    key_name: str
    security_groups: tuple[str, ...]
    user_data: str = ""
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)


# =============================================================================
# Nodes
# =============================================================================


@dataclass(frozen=True, slots=True)
class NodeMetadata:
    """A provisioned compute node.

    Identity is the provider id alone; two snapshots of the same instance
    compare equal regardless of state.
    """

    id: str
    tag: Tag | None = field(compare=False)
    location_id: str = field(compare=False)
    state: NodeState = field(compare=False)
    name: str = field(default="", compare=False)
    image_id: str = field(default="", compare=False)
    instance_type: str = field(default="", compare=False)
    public_addresses: tuple[str, ...] = field(default=(), compare=False)
    private_addresses: tuple[str, ...] = field(default=(), compare=False)
    credentials: Credentials | None = field(default=None, compare=False, repr=False)
    extra: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )
    kind: Literal["node"] = field(default="node", init=False, repr=False, compare=False)

    @property
    def address(self) -> str | None:
        """Best address to reach the node from outside."""
        for addresses in (self.public_addresses, self.private_addresses):
            if addresses:
                return addresses[0]
        return None


@dataclass(frozen=True, slots=True)
class NodeRef:
    """Lightweight handle on a node known only by id and location."""

    id: str
    location_id: str
    kind: Literal["node-ref"] = field(default="node-ref", init=False, repr=False)


type ComputeResource = NodeMetadata | NodeRef | Image | Size | Location


def as_node_ref(resource: ComputeResource) -> NodeRef:
    """Resolve a compute resource to a node handle, rejecting non-nodes."""
    match resource:
        case NodeMetadata(id=node_id, location_id=location_id) | NodeRef(
            id=node_id, location_id=location_id
        ):
            if not node_id:
                raise ValidationError("node.id is required")
            return NodeRef(node_id, location_id)
        case Image() | Size() | Location():
            raise ValidationError(f"this is only valid for nodes, not {resource.kind}")
        case _:
            raise ValidationError(f"unsupported compute resource: {type(resource).__name__}")
