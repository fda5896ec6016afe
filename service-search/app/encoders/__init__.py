"""Embedding encoders.

Exports nothing eagerly; import ``openai_provider`` for the
``OpenAIEmbeddingProvider`` and its ``Embedding | EmbeddingUnavailable``
result types.
"""
