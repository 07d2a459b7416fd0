"""Size and location catalog, and the template builder.

Sizes are a static table of EC2 instance types. Locations form a tree:
the provider, its regions, and each region's zones.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Final

from skytag.constants import PROVIDER_ID, SUPPORTED_REGIONS, ZONE_SUFFIXES, LocationScope
from skytag.core.exceptions import ValidationError
from skytag.types import Image, Location, Size, Template, TemplateOptions

# =============================================================================
# Sizes
# =============================================================================

SIZES: Final[Mapping[str, Size]] = MappingProxyType({
    s.id: s
    for s in (
        Size("t3.micro", "t3.micro", cores=2, ram_mb=1024),
        Size("t3.small", "t3.small", cores=2, ram_mb=2048),
        Size("t3.medium", "t3.medium", cores=2, ram_mb=4096),
        Size("m1.small", "m1.small", cores=1, ram_mb=1740, disk_gb=160),
        Size("m1.large", "m1.large", cores=4, ram_mb=7680, disk_gb=850),
        Size("m1.xlarge", "m1.xlarge", cores=8, ram_mb=15360, disk_gb=1690),
        Size("m5.large", "m5.large", cores=2, ram_mb=8192),
        Size("m5.xlarge", "m5.xlarge", cores=4, ram_mb=16384),
        Size("c5.large", "c5.large", cores=2, ram_mb=4096),
        Size("c5.xlarge", "c5.xlarge", cores=4, ram_mb=8192),
        Size("r5.large", "r5.large", cores=2, ram_mb=16384),
    )
})


# =============================================================================
# Locations
# =============================================================================


def build_locations(regions: Iterable[str] = SUPPORTED_REGIONS) -> dict[str, Location]:
    """Provider root, each region, and zones ``<region>a`` .. ``<region>c``."""
    locations = {PROVIDER_ID: Location(PROVIDER_ID, LocationScope.PROVIDER, "Amazon EC2")}
    for region in regions:
        locations[region] = Location(region, LocationScope.REGION, region, parent=PROVIDER_ID)
        for suffix in ZONE_SUFFIXES:
            zone = f"{region}{suffix}"
            locations[zone] = Location(zone, LocationScope.ZONE, zone, parent=region)
    return locations


def resolve_region_zone(location: Location) -> tuple[str, str | None]:
    """(region, zone) of a launch location. Zone is set only for zone scope."""
    match location.scope:
        case LocationScope.ZONE:
            if not location.parent:
                raise ValidationError(f"zone {location.id} has no parent region")
            return location.parent, location.id
        case LocationScope.REGION:
            return location.id, None
        case _:
            raise ValidationError(f"cannot launch into {location.scope} location {location.id}")


def region_of(location_id: str, locations: Mapping[str, Location] | None = None) -> str:
    """Region of a node's location id.

    Unknown ids ending in a zone letter are treated as zones of the region
    spelled by the rest of the id.
    """
    location = (locations or {}).get(location_id)
    if location is not None:
        return resolve_region_zone(location)[0]
    if location_id and location_id[-1].isalpha() and location_id[-2:-1].isdigit():
        return location_id[:-1]
    return location_id


# =============================================================================
# Template Builder
# =============================================================================


@dataclass(slots=True)
class TemplateBuilder:
    """Fluent builder that resolves ids against the catalog.

    Example:
        >>> template = (
        ...     service.template_builder()
        ...     .image_id("ami-0abc")
        ...     .min_cores(2)
        ...     .location_id("us-east-1a")
        ...     .inbound_ports(22, 80)
        ...     .build()
        ... )
    """

    sizes: Mapping[str, Size] = field(default_factory=lambda: SIZES)
    locations: Mapping[str, Location] = field(default_factory=build_locations)
    images: Sequence[Image] = ()
    default_location: str = SUPPORTED_REGIONS[0]

    _image_id: str | None = None
    _size_id: str | None = None
    _min_cores: float = 0
    _min_ram_mb: int = 0
    _location_id: str | None = None
    _options: TemplateOptions = field(default_factory=TemplateOptions)

    def image_id(self, image_id: str) -> TemplateBuilder:
        self._image_id = image_id
        return self

    def size_id(self, size_id: str) -> TemplateBuilder:
        self._size_id = size_id
        return self

    def min_cores(self, cores: float) -> TemplateBuilder:
        self._min_cores = cores
        return self

    def min_ram(self, ram_mb: int) -> TemplateBuilder:
        self._min_ram_mb = ram_mb
        return self

    def location_id(self, location_id: str) -> TemplateBuilder:
        self._location_id = location_id
        return self

    def inbound_ports(self, *ports: int) -> TemplateBuilder:
        self._options = replace(self._options, inbound_ports=ports)
        return self

    def run_script(self, script: str) -> TemplateBuilder:
        self._options = replace(self._options, run_script=script)
        return self

    def options(self, options: TemplateOptions) -> TemplateBuilder:
        self._options = options
        return self

    def _resolve_size(self) -> Size:
        if self._size_id is not None:
            if self._size_id not in self.sizes:
                raise ValidationError(f"unknown size {self._size_id}")
            return self.sizes[self._size_id]
        candidates = [
            s for s in self.sizes.values()
            if s.cores >= self._min_cores and s.ram_mb >= self._min_ram_mb
        ]
        if not candidates:
            raise ValidationError(
                f"no size with >= {self._min_cores} cores and >= {self._min_ram_mb}MB ram"
            )
        return min(candidates, key=lambda s: (s.cores, s.ram_mb, s.id))

    def _resolve_image(self, region: str) -> Image:
        if self._image_id is None:
            raise ValidationError("image_id is required")
        for image in self.images:
            if image.id == self._image_id:
                return image
        return Image(id=self._image_id, region=region)

    def build(self) -> Template:
        location_id = self._location_id or self.default_location
        location = self.locations.get(location_id)
        if location is None:
            raise ValidationError(f"unknown location {location_id}")
        region, _ = resolve_region_zone(location)
        return Template(
            image=self._resolve_image(region),
            size=self._resolve_size(),
            location=location,
            options=self._options,
        )
