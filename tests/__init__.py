"""
storeguard Test Suite.

This package contains:
- unit/: Unit tests (single component, temporary files only)
- integration/: Integration tests (boot, restoration, HTTP app, CLI)
"""
