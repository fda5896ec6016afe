"""Search retrievers for lexical and semantic workflows.

Retrievers encapsulate how candidates are fetched from backends before
ranking. Splitting retrieval from ranking keeps the pipeline modular and
testable.

Contents
- ``lexical``: PostgreSQL full-text and in-memory text scorers
- ``cache_manager``: Redis cache for query embeddings and hybrid results
"""
