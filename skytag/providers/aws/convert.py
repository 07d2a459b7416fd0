"""Running instance -> NodeMetadata."""

from __future__ import annotations

from collections.abc import Callable
from types import MappingProxyType

from skytag.constants import SkytagTag
from skytag.types import Credentials, NodeMetadata, RegionTag, RunningInstance

type CredentialsLookup = Callable[[RegionTag], Credentials | None]


def tag_of(instance: RunningInstance) -> str | None:
    """Group tag of an instance: the resource tag, else its key pair name."""
    return instance.tags.get(SkytagTag.GROUP) or instance.key_name


def running_instance_to_node_metadata(
    instance: RunningInstance,
    credentials: CredentialsLookup | None = None,
) -> NodeMetadata:
    tag = tag_of(instance)
    creds = credentials(RegionTag(instance.region, tag)) if credentials and tag else None
    extra = {"reservation_region": instance.region}
    if instance.launch_time is not None:
        extra["launch_time"] = instance.launch_time.isoformat()

    return NodeMetadata(
        id=instance.id,
        tag=tag,
        location_id=instance.availability_zone or instance.region,
        state=instance.node_state,
        name=instance.tags.get("Name", f"{tag}-{instance.id}" if tag else instance.id),
        image_id=instance.image_id,
        instance_type=instance.instance_type,
        public_addresses=(instance.public_ip,) if instance.public_ip else (),
        private_addresses=(instance.private_ip,) if instance.private_ip else (),
        credentials=creds,
        extra=MappingProxyType(extra),
    )
