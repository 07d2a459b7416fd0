"""AWS EC2 provider for skytag.

Example:
    from skytag.providers.aws import BotoEC2

    ec2 = BotoEC2()
    ec2.describe_instances("us-east-1")
"""

from skytag.providers.aws.ec2 import BotoEC2

__all__ = ["BotoEC2"]
