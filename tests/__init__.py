"""
PITR Recovery Test Suite.

This package contains:
- unit/: Unit tests (single component, temporary SQLite files)
- integration/: Integration tests (restorer, service envelopes, admin HTTP, CLI)
"""
