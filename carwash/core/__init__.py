"""
Core utilities shared across the storage layer.

This package hosts:
- configuration helpers (env vars, paths, feature flags)
- password hashing and secrets-at-rest encryption
- logging setup and small value helpers (ids, timestamps, decimal text)

Storage back ends and services depend on these primitives instead of
reading os.environ directly.
"""
