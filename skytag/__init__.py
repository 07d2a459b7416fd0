"""skytag - provision and tear down tagged groups of EC2 nodes.

Example:

    from skytag import create_service

    service = create_service()
    template = (
        service.template_builder()
        .image_id("ami-0abc")
        .min_cores(2)
        .location_id("us-east-1a")
        .inbound_ports(22, 8080)
        .run_script("sudo apt-get update")
        .build()
    )

    nodes = service.run_nodes_with_tag("web", 3, template)
    service.destroy_nodes_with_tag("web")
"""

# Cancellation
from skytag.cancellation import CancellationToken

# Catalog
from skytag.catalog import SIZES, TemplateBuilder, build_locations

# Configuration
from skytag.config import Settings, load_settings

# Configuration of nodes
from skytag.configurator import ConfigureFailed, Configured, NodeConfigurator

# Constants
from skytag.constants import LocationScope, NodeState

# Exceptions
from skytag.core.exceptions import (
    AmbiguousNodeError,
    CancelledError,
    ConfigurationError,
    InvalidTagError,
    NodeConfigurationError,
    NodeNotFoundError,
    ProviderError,
    ProvisioningError,
    ProvisioningExhaustedError,
    SizeMismatchError,
    SkytagError,
    TerminationExhaustedError,
    ValidationError,
)

# Logging
from skytag.logging import LogConfig

# Wiring
from skytag.module import SkytagModule, create_service

# Orchestration
from skytag.provisioner import GroupProvisioner
from skytag.registry import ResourceRegistry
from skytag.retry import RetryPolicy
from skytag.service import EC2ComputeService
from skytag.teardown import CascadeResult, GroupTeardown

# Types
from skytag.types import (
    ComputeResource,
    Credentials,
    Image,
    Location,
    NodeMetadata,
    NodeRef,
    PortsRegionTag,
    RegionTag,
    Size,
    Template,
    TemplateOptions,
)
from skytag.waiter import InstanceStateWaiter, WaitResult

__version__ = "0.1.0"

__all__ = [
    # Service
    "EC2ComputeService",
    "SkytagModule",
    "create_service",
    # Orchestration
    "GroupProvisioner",
    "GroupTeardown",
    "CascadeResult",
    "InstanceStateWaiter",
    "WaitResult",
    "NodeConfigurator",
    "Configured",
    "ConfigureFailed",
    "ResourceRegistry",
    "RetryPolicy",
    "CancellationToken",
    # Catalog
    "SIZES",
    "TemplateBuilder",
    "build_locations",
    # Types
    "ComputeResource",
    "Credentials",
    "Image",
    "Location",
    "LocationScope",
    "NodeMetadata",
    "NodeRef",
    "NodeState",
    "PortsRegionTag",
    "RegionTag",
    "Size",
    "Template",
    "TemplateOptions",
    # Configuration
    "Settings",
    "LogConfig",
    "load_settings",
    # Exceptions
    "SkytagError",
    "ValidationError",
    "InvalidTagError",
    "SizeMismatchError",
    "ConfigurationError",
    "ProviderError",
    "ProvisioningError",
    "ProvisioningExhaustedError",
    "NodeConfigurationError",
    "TerminationExhaustedError",
    "NodeNotFoundError",
    "AmbiguousNodeError",
    "CancelledError",
]
