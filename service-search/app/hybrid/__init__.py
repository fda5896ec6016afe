"""Hybrid search orchestration.

Includes the ``SearchManager`` which runs the lexical scorer, decides when
the vector path is worth an embedding call, and merges both result lists.
"""
