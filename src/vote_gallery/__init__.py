"""Vote Gallery: shared three-way voting on an image catalog."""

__version__ = "0.1.0"
