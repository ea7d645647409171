"""Inference server that ranks reference images for an uploaded photo.

This service is responsible for:
- Loading the embedding model and reference set once at startup
- Accepting query images via HTTP
- Ranking the reference set by distance to each query
- Reloading the model on request

The query itself is never stored: each request's distance vector is
ranked and discarded.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException, File, Query, UploadFile
from pydantic import BaseModel
from PIL import Image

from ..embedding.storage import ReferenceStore
from ..scanner.image_utils import decode_base64_image, decode_image
from .query import DEFAULT_TOP_K, QueryOutcome, SimilarityQuery
from .registry import (
    DEFAULT_MODEL_NAME,
    DEFAULT_PRETRAINED,
    ModelRegistry,
    ModelUnavailableError,
)

logger = logging.getLogger(__name__)


class RankingRequest(BaseModel):
    """Request to rank the reference set for one or more images."""

    images: List[str]  # Base64-encoded images
    k: int = DEFAULT_TOP_K


class MatchModel(BaseModel):
    reference_index: int
    distance: float
    file_path: Optional[str] = None


class RankingResult(BaseModel):
    matches: List[MatchModel]
    message: str


class RankingResponse(BaseModel):
    """Response with one ranking per submitted image."""

    results: List[RankingResult]
    model_info: dict
    count: int


def _to_result(outcome: QueryOutcome, references: ReferenceStore) -> RankingResult:
    return RankingResult(
        matches=[
            MatchModel(
                reference_index=match.reference_index,
                distance=match.distance,
                file_path=references.get_path(match.reference_index),
            )
            for match in outcome.matches
        ],
        message=outcome.message,
    )


def create_app(query: Optional[SimilarityQuery] = None) -> FastAPI:
    """
    Create FastAPI application for the ranking service.

    Args:
        query: Pre-built query runner; when omitted the default model and
            the reference set from REFERENCES_DIR are loaded at startup
    """
    app = FastAPI(
        title="Image Similarity Ranking Service",
        description="Ranks a fixed reference image set by similarity to a query photo",
        version="0.1.0",
    )
    app.state.query = query

    @app.on_event("startup")
    async def startup():
        """Load default model and reference set at startup."""
        if app.state.query is not None:
            return

        logger.info("Starting ranking service...")
        registry = ModelRegistry()
        try:
            registry.load(
                os.getenv("MODEL_NAME", DEFAULT_MODEL_NAME),
                os.getenv("MODEL_PRETRAINED", DEFAULT_PRETRAINED),
            )
        except ModelUnavailableError as e:
            # Keep serving; /model/reload can recover once the model is reachable
            logger.error(f"Starting without a model: {e}")

        references = ReferenceStore(Path(os.getenv("REFERENCES_DIR", "references")))
        if len(references) == 0:
            logger.warning(f"Reference set at {references.store_path} is empty")

        app.state.query = SimilarityQuery(
            registry,
            references,
            metric=os.getenv("DISTANCE_METRIC", "cosine"),
        )
        logger.info(f"Ranking service ready ({len(references)} references)")

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.query is not None:
            app.state.query.close()

    def _query() -> SimilarityQuery:
        if app.state.query is None:
            raise HTTPException(status_code=503, detail="Service not initialized")
        return app.state.query

    def _model_info(runner: SimilarityQuery) -> dict:
        embedder = runner.registry.current
        version = runner.registry.current_version
        if embedder is None or version is None:
            raise HTTPException(status_code=503, detail="No model loaded")
        info = dict(embedder.get_model_info())
        info["revision"] = version.revision
        info["reference_count"] = len(runner.references)
        info["metric"] = runner.metric
        return info

    async def _rank_images(images: List[Image.Image], k: int) -> RankingResponse:
        runner = _query()
        model_info = _model_info(runner)

        logger.info(f"Ranking {len(images)} images (k={k})")
        outcomes = await asyncio.gather(
            *(asyncio.wrap_future(runner.submit(image, k)) for image in images)
        )

        failed = [outcome for outcome in outcomes if not outcome.ok]
        if failed:
            raise HTTPException(status_code=500, detail=failed[0].message)

        results = [_to_result(outcome, runner.references) for outcome in outcomes]
        return RankingResponse(results=results, model_info=model_info, count=len(results))

    @app.get("/health")
    @app.get("/healthz")  # Alias for K8s-style health checks
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/model-info")
    async def get_model_info():
        """Get information about the currently loaded model."""
        return _model_info(_query())

    @app.post("/model/reload")
    async def reload_model():
        """Reload the current model, e.g. after new weights were published."""
        runner = _query()
        try:
            await asyncio.to_thread(runner.registry.reload)
        except ModelUnavailableError as e:
            logger.error(f"Model reload failed: {e}")
            raise HTTPException(status_code=503, detail=str(e))
        return _model_info(runner)

    @app.post("/rank/base64", response_model=RankingResponse)
    async def rank_base64(request: RankingRequest):
        """
        Rank the reference set for images provided as base64 strings.

        Args:
            request: RankingRequest with base64-encoded images

        Returns:
            RankingResponse with one ranking per image
        """
        if not request.images:
            raise HTTPException(status_code=400, detail="No images provided")

        try:
            images = []
            for i, b64_image in enumerate(request.images):
                try:
                    images.append(decode_base64_image(b64_image))
                except Exception as e:
                    logger.error(f"Failed to decode image {i}: {e}")
                    raise HTTPException(
                        status_code=400,
                        detail=f"Failed to decode image {i}: {str(e)}"
                    )

            return await _rank_images(images, request.k)

        except HTTPException:
            raise
        except Exception as e:
            logger.exception("Error during ranking")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/rank/upload", response_model=RankingResponse)
    async def rank_upload(
        files: List[UploadFile] = File(...),
        k: int = Query(DEFAULT_TOP_K),
    ):
        """
        Rank the reference set for images provided as multipart uploads.

        Args:
            files: List of image files
            k: Number of matches to keep per image

        Returns:
            RankingResponse with one ranking per image
        """
        if not files:
            raise HTTPException(status_code=400, detail="No files provided")

        try:
            images = []
            for i, file in enumerate(files):
                try:
                    images.append(decode_image(await file.read()))
                except Exception as e:
                    logger.error(f"Failed to read file {i} ({file.filename}): {e}")
                    raise HTTPException(
                        status_code=400,
                        detail=f"Failed to read file {i}: {str(e)}"
                    )

            return await _rank_images(images, k)

        except HTTPException:
            raise
        except Exception as e:
            logger.exception("Error during ranking")
            raise HTTPException(status_code=500, detail=str(e))

    return app


def main():
    """Main entry point."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Image similarity ranking service")
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1 or HOST env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8002")),
        help="Port to bind to (default: 8002 or PORT env var)",
    )
    parser.add_argument(
        "--model-name",
        type=str,
        default=os.getenv("MODEL_NAME", DEFAULT_MODEL_NAME),
        help="Model name to use (default: ViT-B-32 or MODEL_NAME env var)",
    )
    parser.add_argument(
        "--pretrained",
        type=str,
        default=os.getenv("MODEL_PRETRAINED", DEFAULT_PRETRAINED),
        help="Pretrained weights (default: openai or MODEL_PRETRAINED env var)",
    )
    parser.add_argument(
        "--references",
        type=Path,
        default=Path(os.getenv("REFERENCES_DIR", "references")),
        help="Reference set directory (default: references or REFERENCES_DIR env var)",
    )
    parser.add_argument(
        "--metric",
        type=str,
        default=os.getenv("DISTANCE_METRIC", "cosine"),
        choices=["cosine", "euclidean"],
        help="Distance metric (default: cosine or DISTANCE_METRIC env var)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: info or LOG_LEVEL env var)",
    )

    args = parser.parse_args()

    log_level = getattr(logging, args.log_level.upper())
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting ranking service on {args.host}:{args.port}")
    logger.info(f"Default model: {args.model_name} ({args.pretrained})")

    # Startup reads these, so CLI flags win over the environment
    os.environ["MODEL_NAME"] = args.model_name
    os.environ["MODEL_PRETRAINED"] = args.pretrained
    os.environ["REFERENCES_DIR"] = str(args.references)
    os.environ["DISTANCE_METRIC"] = args.metric

    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
