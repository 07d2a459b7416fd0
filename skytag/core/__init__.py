"""Core primitives shared across skytag modules."""
