"""
SheAid Engine Test Suite.

This package contains:
- unit/: Unit tests (in-memory chain and store, no external dependencies)
- integration/: Integration tests (SQLite store, event bridge, HTTP gateway)
"""
