"""Core configuration and vote domain primitives."""
