"""Image embeddings, reference storage and distances."""
