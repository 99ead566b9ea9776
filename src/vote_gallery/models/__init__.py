# src/vote_gallery/models/__init__.py
"""SQLAlchemy models for the Vote Gallery service."""

from .kv_record import KeyValueRecord

__all__ = ["KeyValueRecord"]
