"""Vector store adapters and utilities.

Primary components:
- ``base``: abstract ``VectorStore`` interface and common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``memory``: numpy-backed in-memory implementation for dev and tests.
- ``factory``: helpers to construct a store from typed config.

Guidance:
- Prefer constructing via ``factory.create_vector_store_from_settings`` so
  runtime services remain decoupled from specific backends.
"""
