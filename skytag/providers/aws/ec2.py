"""boto3-backed EC2 boundary.

One EC2 client per region, created lazily. Every API call goes through
``_call``, which retries throttling and translates botocore failures into
``ProviderError``.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from skytag.core.exceptions import ProviderError
from skytag.retry import on_error_code, retry
from skytag.types import Image, LaunchOptions, Reservation, RunningInstance

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

THROTTLING_CODES: Final[tuple[str, ...]] = (
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
)

_INSTANCE_NOT_FOUND: Final = "InvalidInstanceID.NotFound"


def _parse_instance(region: str, raw: dict[str, Any]) -> RunningInstance:
    placement = raw.get("Placement", {})
    return RunningInstance(
        id=raw["InstanceId"],
        region=region,
        state=raw.get("State", {}).get("Name", ""),
        availability_zone=placement.get("AvailabilityZone", ""),
        image_id=raw.get("ImageId", ""),
        instance_type=raw.get("InstanceType", ""),
        key_name=raw.get("KeyName"),
        security_groups=tuple(g.get("GroupName", "") for g in raw.get("SecurityGroups", [])),
        public_ip=raw.get("PublicIpAddress"),
        private_ip=raw.get("PrivateIpAddress"),
        tags=MappingProxyType({t["Key"]: t["Value"] for t in raw.get("Tags", [])}),
        launch_time=raw.get("LaunchTime"),
    )


def _parse_image(region: str, raw: dict[str, Any]) -> Image:
    return Image(
        id=raw["ImageId"],
        region=region,
        name=raw.get("Name", ""),
        architecture=raw.get("Architecture", "x86_64"),
        description=raw.get("Description", ""),
    )


class BotoEC2:
    """EC2Boundary over boto3."""

    def __init__(
        self,
        session: boto3.Session | None = None,
        client_config: Config | None = None,
    ) -> None:
        self._session = session or boto3.Session()
        self._config = client_config or Config(retries={"max_attempts": 1, "mode": "standard"})
        self._clients: dict[str, EC2Client] = {}
        self._lock = threading.Lock()

    def _client(self, region: str) -> EC2Client:
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                client = self._session.client("ec2", region_name=region, config=self._config)
                self._clients[region] = client
            return client

    @retry(on=on_error_code(*THROTTLING_CODES), max_attempts=5)
    def _call(self, region: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        client = self._client(region)
        try:
            return getattr(client, operation)(**kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise ProviderError(
                operation, error.get("Code", "Unknown"), error.get("Message", "")
            ) from e
        except BotoCoreError as e:
            raise ProviderError(operation, type(e).__name__, str(e)) from e

    # =========================================================================
    # Instances
    # =========================================================================

    def launch_instances(
        self,
        region: str,
        zone: str | None,
        image_id: str,
        min_count: int,
        max_count: int,
        options: LaunchOptions,
    ) -> Reservation:
        kwargs: dict[str, Any] = {
            "ImageId": image_id,
            "MinCount": min_count,
            "MaxCount": max_count,
            "InstanceType": options.instance_type,
            "KeyName": options.key_name,
            "SecurityGroups": list(options.security_groups),
        }
        if zone:
            kwargs["Placement"] = {"AvailabilityZone": zone}
        if options.user_data:
            kwargs["UserData"] = options.user_data
        if options.tags:
            kwargs["TagSpecifications"] = [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": k, "Value": v} for k, v in options.tags.items()],
                }
            ]

        response = self._call(region, "run_instances", **kwargs)
        return Reservation(
            id=response.get("ReservationId", ""),
            region=region,
            instances=tuple(_parse_instance(region, i) for i in response.get("Instances", [])),
        )

    def describe_instances(self, region: str, *ids: str) -> list[RunningInstance]:
        kwargs: dict[str, Any] = {"InstanceIds": list(ids)} if ids else {}
        instances: list[RunningInstance] = []
        while True:
            try:
                response = self._call(region, "describe_instances", **kwargs)
            except ProviderError as e:
                if not ids or e.code != _INSTANCE_NOT_FOUND:
                    raise
                # Freshly launched ids can lag behind; describe the rest one by one.
                if len(ids) == 1:
                    return []
                return [i for one in ids for i in self.describe_instances(region, one)]

            for reservation in response.get("Reservations", []):
                instances.extend(
                    _parse_instance(region, raw) for raw in reservation.get("Instances", [])
                )
            token = response.get("NextToken")
            if not token:
                return instances
            kwargs["NextToken"] = token

    def terminate_instances(self, region: str, *ids: str) -> None:
        if ids:
            self._call(region, "terminate_instances", InstanceIds=list(ids))

    # =========================================================================
    # Security Groups
    # =========================================================================

    def describe_security_groups(self, region: str, name: str) -> list[str]:
        response = self._call(
            region,
            "describe_security_groups",
            Filters=[{"Name": "group-name", "Values": [name]}],
        )
        return [sg["GroupId"] for sg in response.get("SecurityGroups", [])]

    def create_security_group(self, region: str, name: str, description: str) -> str:
        response = self._call(
            region, "create_security_group", GroupName=name, Description=description
        )
        return response["GroupId"]

    def authorize_ingress(self, region: str, name: str, port: int, cidr: str = "0.0.0.0/0") -> None:
        self._call(
            region,
            "authorize_security_group_ingress",
            GroupName=name,
            IpPermissions=[
                {
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "IpRanges": [{"CidrIp": cidr}],
                }
            ],
        )

    def delete_security_group(self, region: str, name: str) -> None:
        self._call(region, "delete_security_group", GroupName=name)

    # =========================================================================
    # Key Pairs
    # =========================================================================

    def describe_key_pairs(self, region: str, name: str) -> list[str]:
        response = self._call(
            region,
            "describe_key_pairs",
            Filters=[{"Name": "key-name", "Values": [name]}],
        )
        return [kp["KeyName"] for kp in response.get("KeyPairs", [])]

    def create_key_pair(self, region: str, name: str) -> str:
        response = self._call(region, "create_key_pair", KeyName=name)
        return response["KeyMaterial"]

    def delete_key_pair(self, region: str, name: str) -> None:
        self._call(region, "delete_key_pair", KeyName=name)

    # =========================================================================
    # Images
    # =========================================================================

    def describe_images(self, region: str, owners: Sequence[str]) -> list[Image]:
        response = self._call(
            region,
            "describe_images",
            Owners=list(owners),
            Filters=[{"Name": "state", "Values": ["available"]}],
        )
        return [_parse_image(region, raw) for raw in response.get("Images", [])]
