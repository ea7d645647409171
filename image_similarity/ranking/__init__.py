"""Top-k ranking of reference images by distance."""

import heapq
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

# Below this fraction of n, a bounded heap beats a full sort
PARTIAL_SELECTION_RATIO = 0.25


@dataclass(frozen=True)
class RankedMatch:
    """A reference image and its distance to the query."""

    reference_index: int
    distance: float


def _as_distance_vector(distances) -> np.ndarray:
    """Flatten model output into a 1-D float vector."""
    vector = np.asarray(distances, dtype=np.float64)
    if vector.ndim != 1:
        vector = vector.reshape(-1)
    return vector


def _sort_key(item):
    index, distance = item
    # NaN never compares, so push it behind every real distance
    if math.isnan(distance):
        return (1, 0.0, index)
    return (0, distance, index)


def rank(distances, k: int) -> List[RankedMatch]:
    """
    Select the k nearest reference images.

    Args:
        distances: One distance per reference image; position is the
            reference identifier
        k: Number of matches to keep (values <= 0 give an empty result)

    Returns:
        Matches sorted ascending by distance, ties by ascending index
    """
    vector = _as_distance_vector(distances)
    n = len(vector)
    limit = min(max(int(k), 0), n)

    if limit == 0:
        return []

    if limit < n * PARTIAL_SELECTION_RATIO:
        pairs = heapq.nsmallest(limit, enumerate(vector.tolist()), key=_sort_key)
        return [RankedMatch(index, distance) for index, distance in pairs]

    # Stable sort keeps equal distances in original index order
    order = np.argsort(vector, kind="stable")[:limit]
    return [RankedMatch(int(i), float(vector[i])) for i in order]


def format_ranking(
    matches: Sequence[RankedMatch],
    reference_paths: Optional[Sequence[str]] = None,
) -> str:
    """
    Render a ranking as a human-readable listing.

    Args:
        matches: Ranked matches to render
        reference_paths: Optional file path per reference index

    Returns:
        Listing with one line per match
    """
    message = "Results\n\n"
    for match in matches:
        line = f"Element: {match.distance}  Offset: {match.reference_index}"
        if reference_paths is not None and 0 <= match.reference_index < len(reference_paths):
            line += f"  Path: {reference_paths[match.reference_index]}"
        message += line + "\n"
    return message
