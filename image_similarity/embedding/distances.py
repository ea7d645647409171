"""Distances between a query embedding and the reference set."""

import numpy as np

DISTANCE_METRICS = ("cosine", "euclidean")


def compute_distances(
    query_embedding: np.ndarray,
    reference_embeddings: np.ndarray,
    metric: str = "cosine",
) -> np.ndarray:
    """
    Compute the distance from a query to every reference embedding.

    Args:
        query_embedding: Query vector, shape (embedding_dim,)
        reference_embeddings: Reference matrix, shape (n, embedding_dim)
        metric: "cosine" (1 - cosine similarity) or "euclidean"

    Returns:
        Non-negative distances, shape (n,); index i is reference i
    """
    if metric not in DISTANCE_METRICS:
        raise ValueError(f"Unknown distance metric: {metric}")

    references = np.asarray(reference_embeddings, dtype=np.float32)
    if references.size == 0:
        return np.zeros(0, dtype=np.float32)

    query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)

    if metric == "euclidean":
        return np.linalg.norm(references - query, axis=1)

    query_norm = np.linalg.norm(query)
    reference_norms = np.linalg.norm(references, axis=1)
    denominator = np.clip(reference_norms * query_norm, 1e-12, None)
    similarities = (references @ query) / denominator

    # Rounding can push 1 - similarity slightly below zero
    return np.clip(1.0 - similarities, 0.0, None)
