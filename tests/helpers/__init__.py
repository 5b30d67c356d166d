"""Test helper modules for content sync testing.

This package provides utilities for unit and integration testing:
- fake_remote: In-memory stand-ins for the content and media APIs
- workspace: Build workspace folders and content items on disk
"""

from .fake_remote import FakeContentAPI, FakeMediaAPI, RemoteClock, create_mock_authenticator
from .workspace import DEFAULT_URL, init_workspace, read_json, write_file, write_item

__all__ = [
    'DEFAULT_URL',
    'FakeContentAPI',
    'FakeMediaAPI',
    'RemoteClock',
    'create_mock_authenticator',
    'init_workspace',
    'read_json',
    'write_file',
    'write_item',
]
