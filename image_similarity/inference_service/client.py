"""Client for calling the remote ranking service.

This module handles communication with the ranking service,
including image encoding and response handling.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

import httpx
from PIL import Image

from ..ranking import RankedMatch
from ..scanner.image_utils import encode_base64_image
from .query import DEFAULT_TOP_K

logger = logging.getLogger(__name__)


class InferenceClient:
    """Client for calling the ranking service.

    The service URL comes from INFERENCE_SERVICE_URL when not given
    (default: http://127.0.0.1:8002).
    """

    def __init__(
        self,
        service_url: Optional[str] = None,
        timeout: float = 300.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize client.

        Args:
            service_url: Base URL of ranking service (or use INFERENCE_SERVICE_URL env)
            timeout: Request timeout in seconds
            client: Preconfigured httpx client, mainly for tests
        """
        self.service_url = (service_url or os.getenv("INFERENCE_SERVICE_URL", "http://127.0.0.1:8002")).rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

        logger.info(f"InferenceClient initialized: url={self.service_url}")

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def health_check(self) -> bool:
        """
        Check if the ranking service is healthy.

        Returns:
            True if service is accessible and healthy
        """
        try:
            response = self.client.get(f"{self.service_url}/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Health check failed: {e}")
            return False

    def get_model_info(self) -> dict:
        """Get information about the currently loaded model."""
        try:
            response = self.client.get(f"{self.service_url}/model-info")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to get model info: {e}")
            raise

    def reload_model(self) -> dict:
        """Ask the service to reload its model; returns the new model info."""
        try:
            response = self.client.post(f"{self.service_url}/model/reload")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to reload model: {e}")
            raise

    def rank_image(
        self,
        image: Image.Image,
        k: int = DEFAULT_TOP_K,
    ) -> Tuple[List[RankedMatch], str]:
        """
        Rank the reference set for one image sent as base64.

        Args:
            image: PIL Image
            k: Number of matches to keep

        Returns:
            Tuple of (ranked matches, formatted listing)
        """
        try:
            response = self.client.post(
                f"{self.service_url}/rank/base64",
                json={"images": [encode_base64_image(image)], "k": k},
            )
            response.raise_for_status()
            return self._parse_single(response.json())
        except httpx.HTTPError as e:
            logger.error(f"Failed to rank image: {e}")
            raise

    def rank_file(
        self,
        image_path: Path,
        k: int = DEFAULT_TOP_K,
    ) -> Tuple[List[RankedMatch], str]:
        """
        Rank the reference set for one image file sent as an upload.

        This avoids base64 overhead for large images.

        Args:
            image_path: Path to image file
            k: Number of matches to keep

        Returns:
            Tuple of (ranked matches, formatted listing)
        """
        image_path = Path(image_path)
        with open(image_path, "rb") as f:
            files = [("files", (image_path.name, f.read(), "application/octet-stream"))]

        try:
            response = self.client.post(
                f"{self.service_url}/rank/upload",
                files=files,
                params={"k": k},
            )
            response.raise_for_status()
            return self._parse_single(response.json())
        except httpx.HTTPError as e:
            logger.error(f"Failed to rank {image_path}: {e}")
            raise

    @staticmethod
    def _parse_single(payload: dict) -> Tuple[List[RankedMatch], str]:
        result = payload["results"][0]
        matches = [
            RankedMatch(int(match["reference_index"]), float(match["distance"]))
            for match in result["matches"]
        ]
        return matches, result["message"]


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    client = InferenceClient()

    if client.health_check():
        print("✓ Service is healthy")
        print(f"Model info: {client.get_model_info()}")
    else:
        print("✗ Service is not available")
        print("Start the ranking service with:")
        print("  python -m image_similarity.inference_service.server")
