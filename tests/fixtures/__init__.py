"""Test fixtures for content sync tests.

This module provides sample data for:
- Metadata that passes local validation
- Remote content items in their camelCase JSON form
- Small media payloads
"""

from .sample_content import OTHER_PNG_BYTES, PNG_BYTES, remote_item, valid_metadata

__all__ = [
    "OTHER_PNG_BYTES",
    "PNG_BYTES",
    "remote_item",
    "valid_metadata",
]
