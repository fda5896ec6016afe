"""Adapters around external providers.

- ``circuit_breaker``: fail-fast wrapper for embedding API calls
"""
