"""Key pairs and security groups shared by a tag within a region.

Both are named after the tag. Creation is idempotent against what already
exists in the account; deletion re-checks existence first and treats a
"not found" answer as already deleted, since two teardowns may race to the
same cascade.
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from skytag.core.exceptions import ProviderError
from skytag.providers.protocols import EC2Boundary
from skytag.types import Credentials, PortsRegionTag, RegionTag

log = logger.bind(component="aws-resources")

_DUPLICATE_PERMISSION = "InvalidPermission.Duplicate"
_DUPLICATE_GROUP = "InvalidGroup.Duplicate"


def key_pair_factory(ec2: EC2Boundary, login_user: str) -> Callable[[RegionTag], Credentials]:
    """Bind ``create_key_pair_if_needed`` for use as a registry factory."""
    return lambda key: create_key_pair_if_needed(ec2, key, login_user)


def security_group_factory(ec2: EC2Boundary) -> Callable[[PortsRegionTag], str]:
    return lambda key: create_security_group_if_needed(ec2, key)


def create_key_pair_if_needed(ec2: EC2Boundary, key: RegionTag, login_user: str) -> Credentials:
    """Create the tag's key pair and return its credentials.

    EC2 only returns private key material at creation time, so a leftover key
    pair with the same name is replaced.
    """
    if ec2.describe_key_pairs(key.region, key.name):
        log.debug(">> replacing stale keyPair({name}) region({region})", name=key.name, region=key.region)
        ec2.delete_key_pair(key.region, key.name)

    log.debug(">> creating keyPair({name}) region({region})", name=key.name, region=key.region)
    material = ec2.create_key_pair(key.region, key.name)
    log.debug("<< created keyPair({name})", name=key.name)
    return Credentials(user=login_user, key=material)


def create_security_group_if_needed(ec2: EC2Boundary, key: PortsRegionTag) -> str:
    """Ensure the tag's security group exists with every requested port open."""
    ports = key.ports or ()
    existing = ec2.describe_security_groups(key.region, key.name)
    if not existing:
        log.debug(
            ">> creating securityGroup({name}) region({region}) ports({ports})",
            name=key.name, region=key.region, ports=ports,
        )
        try:
            ec2.create_security_group(key.region, key.name, f"skytag group {key.tag}")
        except ProviderError as e:
            if e.code != _DUPLICATE_GROUP:
                raise

    for port in ports:
        try:
            ec2.authorize_ingress(key.region, key.name, port)
        except ProviderError as e:
            if e.code != _DUPLICATE_PERMISSION:
                raise

    log.debug("<< securityGroup({name}) ready", name=key.name)
    return key.name


def delete_security_group(ec2: EC2Boundary, region: str, name: str) -> bool:
    """Delete the group if the provider still reports it. True if deleted here."""
    if not ec2.describe_security_groups(region, name):
        return False
    log.debug(">> deleting securityGroup({name})", name=name)
    try:
        ec2.delete_security_group(region, name)
    except ProviderError as e:
        if not e.not_found:
            raise
        return False
    log.debug("<< deleted securityGroup({name})", name=name)
    return True


def delete_key_pair(ec2: EC2Boundary, region: str, name: str) -> bool:
    """Delete the key pair if the provider still reports it. True if deleted here."""
    if not ec2.describe_key_pairs(region, name):
        return False
    log.debug(">> deleting keyPair({name})", name=name)
    try:
        ec2.delete_key_pair(region, name)
    except ProviderError as e:
        if not e.not_found:
            raise
        return False
    log.debug("<< deleted keyPair({name})", name=name)
    return True
