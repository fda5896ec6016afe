"""Shared libraries for the content search service.

Subpackages:
- ``libs.common``: configuration, logging, metrics, tracing, and match models.
- ``libs.vector_store``: vector store abstractions and concrete backends.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
