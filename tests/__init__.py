"""
Workflow Vault Test Suite.

This package contains:
- unit/: Unit tests (one component over a temporary data dir)
- integration/: Integration tests (restore end-to-end, HTTP API)
"""
