"""Command-line interface for ranking the reference set against one photo."""

import argparse
import logging
import os
from pathlib import Path
import sys

from ..embedding.storage import ReferenceStore
from ..ranking import format_ranking
from ..scanner.image_utils import load_image
from .query import SimilarityQuery
from .registry import DEFAULT_MODEL_NAME, DEFAULT_PRETRAINED, ModelRegistry, ModelUnavailableError


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def rank_local(args) -> int:
    """Rank in-process; returns the process exit code."""
    logger = logging.getLogger(__name__)

    references = ReferenceStore(args.references)
    if len(references) == 0:
        logger.error(f"Reference set is empty: {args.references}")
        logger.error("Build it first: python -m image_similarity.embedding.main <image_dir>")
        return 1

    registry = ModelRegistry()
    try:
        registry.load(args.model, args.pretrained)
    except ModelUnavailableError as e:
        logger.error(str(e))
        return 1

    with SimilarityQuery(registry, references, metric=args.metric) as query:
        outcome = query.submit(load_image(args.image), k=args.k).result()

    print(outcome.message)
    return 0 if outcome.ok else 1


def rank_remote(args) -> int:
    """Rank through a running service; returns the process exit code."""
    import httpx

    from .client import InferenceClient

    logger = logging.getLogger(__name__)

    with InferenceClient(args.service_url) as client:
        if not client.health_check():
            logger.error(f"Ranking service not available at {client.service_url}")
            return 1
        try:
            matches, message = client.rank_file(args.image, k=args.k)
        except httpx.HTTPError as e:
            print(f"Unable to rank image.\n{e}")
            return 1

    print(message or format_ranking(matches))
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Rank reference images by similarity to a photo"
    )
    parser.add_argument(
        "image",
        type=Path,
        help="Query photo",
    )
    parser.add_argument(
        "-k",
        type=int,
        default=int(os.getenv("TOP_K", "5")),
        help="Number of matches to show (default: 5 or TOP_K env var)",
    )
    parser.add_argument(
        "--references",
        type=Path,
        default=Path(os.getenv("REFERENCES_DIR", "references")),
        help="Reference set directory (default: references or REFERENCES_DIR env var)",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=os.getenv("MODEL_NAME", DEFAULT_MODEL_NAME),
        help="CLIP model to use (default: ViT-B-32 or MODEL_NAME env var)",
    )
    parser.add_argument(
        "--pretrained",
        type=str,
        default=os.getenv("MODEL_PRETRAINED", DEFAULT_PRETRAINED),
        help="Pretrained weights (default: openai or MODEL_PRETRAINED env var)",
    )
    parser.add_argument(
        "--metric",
        type=str,
        default=os.getenv("DISTANCE_METRIC", "cosine"),
        choices=["cosine", "euclidean"],
        help="Distance metric (default: cosine or DISTANCE_METRIC env var)",
    )
    parser.add_argument(
        "--remote",
        action="store_true",
        help="Send the photo to a running ranking service instead of loading the model",
    )
    parser.add_argument(
        "--service-url",
        type=str,
        default=None,
        help="Ranking service URL (default: INFERENCE_SERVICE_URL env var or http://127.0.0.1:8002)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if not args.image.exists():
        logger.error(f"Image not found: {args.image}")
        sys.exit(1)

    exit_code = rank_remote(args) if args.remote else rank_local(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
