"""EC2 compute service: the public surface over provisioning and teardown."""

from __future__ import annotations

from collections.abc import Mapping

from loguru import logger

from skytag.cancellation import CancellationToken
from skytag.catalog import SIZES, TemplateBuilder, build_locations, region_of
from skytag.config import Settings
from skytag.core.exceptions import AmbiguousNodeError, NodeNotFoundError
from skytag.providers.aws.convert import running_instance_to_node_metadata
from skytag.providers.protocols import EC2Boundary
from skytag.provisioner import GroupProvisioner
from skytag.registry import ResourceRegistry
from skytag.teardown import CascadeResult, GroupTeardown
from skytag.types import (
    ComputeResource,
    Credentials,
    Image,
    Location,
    NodeMetadata,
    RegionTag,
    Size,
    Tag,
    Template,
    TemplateOptions,
    as_node_ref,
    validate_tag,
)
from skytag.utils.conc import map_async

log = logger.bind(component="service")


class EC2ComputeService:
    """Provision, inspect and destroy tagged groups of EC2 nodes.

    Example:
        >>> service = create_service()
        >>> template = service.template_builder().image_id("ami-0abc").min_cores(2).build()
        >>> nodes = service.run_nodes_with_tag("web", 3, template)
        >>> service.destroy_nodes_with_tag("web")
    """

    def __init__(
        self,
        ec2: EC2Boundary,
        settings: Settings,
        provisioner: GroupProvisioner,
        teardown: GroupTeardown,
        credentials: ResourceRegistry[RegionTag, Credentials],
    ) -> None:
        self._ec2 = ec2
        self._settings = settings
        self._provisioner = provisioner
        self._teardown = teardown
        self._credentials = credentials
        self._locations = build_locations(settings.regions)

    # =========================================================================
    # Groups
    # =========================================================================

    def run_nodes_with_tag(
        self,
        tag: Tag,
        count: int,
        template: Template,
        token: CancellationToken | None = None,
    ) -> dict[str, NodeMetadata]:
        """Provision ``count`` nodes tagged ``tag``, keyed by node id."""
        nodes = self._provisioner.run(tag, count, template, token)
        return {node.id: node for node in nodes}

    def destroy_nodes_with_tag(self, tag: Tag, token: CancellationToken | None = None) -> frozenset[str]:
        return self._teardown.destroy_nodes_with_tag(tag, token)

    def get_nodes_with_tag(self, tag: Tag) -> dict[str, NodeMetadata]:
        validate_tag(tag)
        return {
            node_id: node
            for node_id, node in self.get_nodes().items()
            if node.tag == tag
        }

    # =========================================================================
    # Nodes
    # =========================================================================

    def _to_metadata(self, instances) -> dict[str, NodeMetadata]:
        return {
            i.id: running_instance_to_node_metadata(i, self._credentials.get)
            for i in instances
        }

    def get_nodes(self) -> dict[str, NodeMetadata]:
        """Every instance in the configured regions, keyed by node id."""
        nodes: dict[str, NodeMetadata] = {}
        described = map_async(self._ec2.describe_instances, self._settings.regions, self._settings.max_workers)
        for instances in described:
            nodes.update(self._to_metadata(instances))
        return nodes

    def get_node_metadata(self, node: ComputeResource) -> NodeMetadata:
        ref = as_node_ref(node)
        region = region_of(ref.location_id, self._locations)
        instances = self._ec2.describe_instances(region, ref.id)
        if not instances:
            raise NodeNotFoundError(ref.id, region)
        if len(instances) > 1:
            raise AmbiguousNodeError(ref.id, len(instances))
        return running_instance_to_node_metadata(instances[0], self._credentials.get)

    def destroy_node(
        self,
        node: ComputeResource,
        token: CancellationToken | None = None,
    ) -> CascadeResult | None:
        """Destroy one node, cascading to its tag's resources if it was the last."""
        match node:
            case NodeMetadata(tag=str(tag)) if tag:
                metadata = node
            case _:
                metadata = self.get_node_metadata(node)
        log.debug("destroying {id} (tag {tag})", id=metadata.id, tag=metadata.tag)
        return self._teardown.destroy_node(metadata, token)

    # =========================================================================
    # Catalog
    # =========================================================================

    def get_sizes(self) -> dict[str, Size]:
        return dict(SIZES)

    def get_locations(self) -> dict[str, Location]:
        return dict(self._locations)

    def get_images(self) -> dict[str, Image]:
        owners = self._settings.image_owners
        images: dict[str, Image] = {}
        for found in map_async(
            lambda region: self._ec2.describe_images(region, owners),
            self._settings.regions,
            self._settings.max_workers,
        ):
            images.update((image.id, image) for image in found)
        return images

    def template_builder(self, images: Mapping[str, Image] | None = None) -> TemplateBuilder:
        builder = TemplateBuilder(
            locations=self._locations,
            images=tuple((images or {}).values()),
            default_location=self._settings.regions[0],
        )
        return builder.options(TemplateOptions(login_user=self._settings.login_user))
