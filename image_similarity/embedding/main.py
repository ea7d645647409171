"""Command-line interface for building the reference image set."""

import argparse
import logging
from pathlib import Path
import sys

from tqdm import tqdm

from ..scanner.image_utils import find_images, load_image
from .storage import ReferenceStore


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_references(
    image_dir: Path,
    store: ReferenceStore,
    embedder,
    batch_size: int = 32,
    chunk_size: int = 100,
) -> int:
    """
    Embed every image under image_dir and append it to the store.

    Images are assigned reference identifiers in sorted path order.

    Returns:
        Number of references added
    """
    logger = logging.getLogger(__name__)
    image_paths = find_images(image_dir)
    model_info = embedder.get_model_info()
    added = 0

    # Load images in chunks so the whole set never sits in memory
    for chunk_start in range(0, len(image_paths), chunk_size):
        chunk_paths = image_paths[chunk_start:chunk_start + chunk_size]
        images = []
        valid_paths = []

        for path in tqdm(chunk_paths, desc=f"Loading images ({chunk_start + 1}-{chunk_start + len(chunk_paths)}/{len(image_paths)})", leave=False):
            try:
                images.append(load_image(path))
                valid_paths.append(str(path))
            except OSError as e:
                logger.warning(f"Skipping unreadable image {path}: {e}")

        if not images:
            continue

        embeddings = embedder.embed_images_batch(images, batch_size=batch_size)
        store.add_references(embeddings, valid_paths, model_info)
        added += len(valid_paths)

    return added


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Build the reference image set for similarity ranking"
    )
    parser.add_argument(
        "image_dir",
        type=Path,
        help="Directory of reference images",
    )
    parser.add_argument(
        "--model",
        type=str,
        default="ViT-B-32",
        help="CLIP model to use (default: ViT-B-32)",
    )
    parser.add_argument(
        "--pretrained",
        type=str,
        default="openai",
        help="Pretrained weights (default: openai)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("references"),
        help="Output directory for the reference set",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=32,
        help="Batch size for embedding generation",
    )
    parser.add_argument(
        "--append",
        action="store_true",
        help="Append to an existing reference set instead of replacing it",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if not args.image_dir.is_dir():
        logger.error(f"Image directory not found: {args.image_dir}")
        sys.exit(1)

    store = ReferenceStore(args.output)
    if len(store) and not args.append:
        logger.info(f"Replacing existing reference set ({len(store)} references)")
        store.clear()

    from .embedder import ImageEmbedder

    logger.info("Initializing embedding model...")
    embedder = ImageEmbedder(model_name=args.model, pretrained=args.pretrained)
    logger.info(f"Model info: {embedder.get_model_info()}")

    added = build_references(args.image_dir, store, embedder, batch_size=args.batch_size)
    if added == 0:
        logger.error(f"No usable images found in {args.image_dir}")
        sys.exit(1)

    store.save()
    logger.info(f"Reference set ready: {len(store)} images in {args.output}")


if __name__ == "__main__":
    main()
