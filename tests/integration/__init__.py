"""Integration tests for content sync.

These tests drive whole commands (status, push, pull, resolve) across two
workspaces that share one in-memory remote, so changes made in one
workspace are observed from the other. No network access is needed.

Run them alone with:
    pytest tests/integration -m integration
"""
