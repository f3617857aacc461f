"""
Yellowbook Semantic Search

Modules:
    embeddings  — OpenAI embedding API calls, text builder, vector codec
    similarity  — Cosine similarity
    semantic    — Assistant search (semantic ranking, demo fallback, caching)
"""
