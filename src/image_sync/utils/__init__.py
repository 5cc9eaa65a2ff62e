"""Utility functions for image sync."""

from .reference import (
    has_registry_host,
    restore_reference,
    rewrite_reference,
    split_reference,
    validate_reference,
)

__all__ = [
    "has_registry_host",
    "restore_reference",
    "rewrite_reference",
    "split_reference",
    "validate_reference",
]
