"""HTTP API for the Vote Gallery service."""
