"""
API layer for the Workflow Vault.

VaultServicer holds the operations; http_server exposes them over aiohttp.
"""

from .http_server import create_http_app
from .service import VaultServicer

__all__ = [
    "VaultServicer",
    "create_http_app",
]
