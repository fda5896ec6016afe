"""Search service package.

Layout:
- ``api``: HTTP endpoints for search and indexing operations.
- ``hybrid``: text + vector search orchestration.
- ``ranking``: result fusion (weighted merge, RRF).
- ``retrievers``: lexical scorers and the Redis cache.
- ``encoders``: embedding provider.
- ``adapters``: circuit breaker around external calls.
"""
