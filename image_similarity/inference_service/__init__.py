"""Model registry, similarity queries and the HTTP ranking service."""
