"""Tests for EC2ComputeService wired through the injector module."""

from __future__ import annotations

from dataclasses import replace

import pytest
from injector import Injector

from skytag.config import Settings
from skytag.constants import NodeState
from skytag.core.exceptions import (
    AmbiguousNodeError,
    InvalidTagError,
    NodeNotFoundError,
    ValidationError,
)
from skytag.module import CredentialsRegistry, SecurityGroupRegistry, SkytagModule
from skytag.service import EC2ComputeService
from skytag.teardown import CascadeResult
from skytag.types import Image, NodeRef

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestWiring:
    def test_registries_are_distinct_singletons(self, ec2, settings):
        injector = Injector([SkytagModule(settings, ec2)])

        assert injector.get(CredentialsRegistry) is injector.get(CredentialsRegistry)
        assert injector.get(CredentialsRegistry) is not injector.get(SecurityGroupRegistry)
        assert injector.get(EC2ComputeService) is injector.get(EC2ComputeService)


class TestGroups:
    def test_run_returns_nodes_by_id(self, service, template):
        nodes = service.run_nodes_with_tag("web", 2, template)

        assert len(nodes) == 2
        assert all(node_id == node.id for node_id, node in nodes.items())

    def test_get_nodes_with_tag(self, service, template):
        web = service.run_nodes_with_tag("web", 2, template)
        service.run_nodes_with_tag("db", 1, template)

        assert service.get_nodes_with_tag("web").keys() == web.keys()

    def test_get_nodes_with_tag_validates(self, service):
        with pytest.raises(InvalidTagError):
            service.get_nodes_with_tag("a-b")

    def test_destroy_nodes_with_tag(self, service, ec2, template):
        nodes = service.run_nodes_with_tag("web", 3, template)

        assert service.destroy_nodes_with_tag("web") == frozenset(nodes)
        assert ec2.live() == []
        assert ec2.key_pairs == {}
        assert ec2.security_groups == {}

    def test_destroyed_nodes_report_terminated(self, service, template):
        service.run_nodes_with_tag("web", 2, template)
        service.destroy_nodes_with_tag("web")

        remaining = service.get_nodes_with_tag("web")
        assert len(remaining) == 2
        assert all(n.state == NodeState.TERMINATED for n in remaining.values())


class TestNodes:
    def test_get_nodes_spans_regions(self, service, template, locations):
        service.run_nodes_with_tag("web", 1, template)
        service.run_nodes_with_tag("web", 1, replace(template, location=locations["eu-west-1"]))

        nodes = service.get_nodes()
        assert {n.location_id for n in nodes.values()} == {"us-east-1a", "eu-west-1a"}

    def test_get_node_metadata(self, service, template):
        (node,) = service.run_nodes_with_tag("web", 1, template).values()

        found = service.get_node_metadata(NodeRef(node.id, node.location_id))

        assert found == node
        assert found.tag == "web"
        assert found.credentials is not None

    def test_get_node_metadata_missing(self, service):
        with pytest.raises(NodeNotFoundError):
            service.get_node_metadata(NodeRef("i-nope", "us-east-1a"))

    def test_get_node_metadata_ambiguous(self, service, ec2, template):
        (node,) = service.run_nodes_with_tag("web", 1, template).values()
        ec2.describe_instances = lambda region, *ids: [ec2.instances[node.id]] * 2

        with pytest.raises(AmbiguousNodeError):
            service.get_node_metadata(node)

    def test_get_node_metadata_rejects_images(self, service):
        with pytest.raises(ValidationError):
            service.get_node_metadata(Image("ami-1", "us-east-1"))

    def test_destroy_node_by_ref_cascades(self, service, ec2, template):
        (node,) = service.run_nodes_with_tag("web", 1, template).values()

        result = service.destroy_node(NodeRef(node.id, node.location_id))

        assert result == CascadeResult(True, True)
        assert ec2.key_pairs == {}


class TestCatalog:
    def test_sizes(self, service):
        assert "t3.micro" in service.get_sizes()

    def test_locations_follow_settings(self, service):
        locations = service.get_locations()
        assert "eu-west-1b" in locations
        assert "us-west-1" not in locations

    def test_images_per_region(self, service, ec2):
        ec2.images["us-east-1"] = [Image("ami-1", "us-east-1")]
        ec2.images["eu-west-1"] = [Image("ami-2", "eu-west-1")]

        assert set(service.get_images()) == {"ami-1", "ami-2"}
        assert ec2.calls["describe_images"] == 2

    def test_template_builder_uses_settings(self, service, settings):
        template = service.template_builder().image_id("ami-1").build()

        assert template.location.id == settings.regions[0]
        assert template.options.login_user == Settings().login_user
