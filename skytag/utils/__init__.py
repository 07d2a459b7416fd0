"""Utility modules for skytag."""
