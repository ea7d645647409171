"""Similarity queries: embed a photo, measure it against the references, rank."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np
from PIL import Image

from ..embedding.distances import DISTANCE_METRICS, compute_distances
from ..embedding.storage import ReferenceStore
from ..ranking import RankedMatch, format_ranking, rank
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


@dataclass
class QueryOutcome:
    """Result of one similarity query, ready for presentation."""

    matches: List[RankedMatch] = field(default_factory=list)
    message: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SimilarityQuery:
    """Runs photos through the current model and ranks the reference set."""

    def __init__(
        self,
        registry: ModelRegistry,
        references: ReferenceStore,
        metric: str = "cosine",
        max_workers: int = 2,
    ):
        """
        Initialize query runner.

        Args:
            registry: Source of the current embedding model
            references: Reference set to rank against
            metric: Distance metric ("cosine" or "euclidean")
            max_workers: Threads used for background inference
        """
        if metric not in DISTANCE_METRICS:
            raise ValueError(f"Unknown distance metric: {metric}")

        self.registry = registry
        self.references = references
        self.metric = metric
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="similarity-query",
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._executor.shutdown(wait=True)

    def distances_for(self, image: Image.Image) -> np.ndarray:
        """
        Compute the distance vector for a query image.

        Args:
            image: Upright RGB query image

        Returns:
            One distance per reference image
        """
        # Hold on to this embedder even if the registry swaps models meanwhile
        embedder = self.registry.require()
        query_embedding = embedder.embed_image(image)
        return compute_distances(
            query_embedding,
            self.references.get_all_embeddings(),
            metric=self.metric,
        )

    def process_query(
        self,
        distances: Optional[np.ndarray],
        error: Optional[BaseException] = None,
        k: int = DEFAULT_TOP_K,
    ) -> QueryOutcome:
        """Rank a distance vector, or report why there is none."""
        if distances is None:
            reason = str(error) if error is not None else "No distances were produced"
            message = f"Unable to rank image.\n{reason}"
            logger.warning(message)
            return QueryOutcome(message=message, error=reason)

        matches = rank(distances, k)
        message = format_ranking(matches, self.references.file_paths)
        logger.info(message)
        return QueryOutcome(matches=matches, message=message)

    def run(self, image: Image.Image, k: int = DEFAULT_TOP_K) -> QueryOutcome:
        """Rank the reference set for one image on the calling thread."""
        try:
            distances = self.distances_for(image)
        except Exception as e:
            logger.exception("Similarity inference failed")
            return self.process_query(None, error=e, k=k)
        return self.process_query(distances, k=k)

    def submit(
        self,
        image: Image.Image,
        k: int = DEFAULT_TOP_K,
        callback: Optional[Callable[[QueryOutcome], None]] = None,
    ) -> "Future[QueryOutcome]":
        """
        Rank the reference set for one image in the background.

        Args:
            image: Upright RGB query image
            k: Number of matches to keep
            callback: Called with the outcome once it is ready

        Returns:
            Future resolving to the QueryOutcome
        """
        future = self._executor.submit(self.run, image, k)
        if callback is not None:
            future.add_done_callback(lambda done: callback(done.result()))
        return future
