"""
API module for the recovery server.

This module provides the administrative HTTP surface (aiohttp) over
RecoveryService.

Invariants:
    - Responses are the service envelopes, unchanged
    - The surface is administrative; bind it to a trusted interface
"""

from .http_server import create_admin_app

__all__ = ["create_admin_app"]
