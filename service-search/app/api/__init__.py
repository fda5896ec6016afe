"""API subpackage for the search service.

Routers expose endpoints for hybrid, text and vector search, (de)indexing,
and index stats. The transport layer stays thin and delegates to
``SearchManager``.
"""
