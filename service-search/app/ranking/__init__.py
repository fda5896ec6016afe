"""Search ranking and result fusion components.

This package combines lexical and semantic signals into one ranked,
deduplicated list.

Contents
- ``fusion``: the weighted hybrid merger and the RRF alternative
"""
