"""Provider boundaries for skytag."""

from skytag.providers.protocols import EC2Boundary

__all__ = ["EC2Boundary"]
