"""
Persistence package for the Authorization Service.

- postgres: asyncpg-backed rule store and principal directory.
- memory: dictionary-backed equivalents for local runs and tests.
- seed: YAML seed files for the in-memory backend.
"""
