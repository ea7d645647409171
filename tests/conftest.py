"""Shared test fixtures for image_similarity tests."""

from typing import List

import numpy as np
import pytest
from PIL import Image

from image_similarity.embedding.storage import ReferenceStore
from image_similarity.inference_service.query import SimilarityQuery
from image_similarity.inference_service.registry import ModelRegistry

REFERENCE_COLORS = [
    (255, 0, 0),
    (0, 255, 0),
    (0, 0, 255),
    (250, 10, 0),
]


class FakeEmbedder:
    """Deterministic stand-in for the CLIP embedder: embeds mean color."""

    embedding_dim = 3

    def __init__(self, model_name: str = "fake", pretrained: str = "none"):
        self.model_name = model_name
        self.pretrained = pretrained
        self.calls = 0

    def embed_image(self, image: Image.Image) -> np.ndarray:
        self.calls += 1
        pixels = np.asarray(image.convert("RGB"), dtype=np.float32)
        vector = pixels.reshape(-1, 3).mean(axis=0) + 1.0
        return vector / np.linalg.norm(vector)

    def embed_images_batch(self, images: List[Image.Image], batch_size: int = 32) -> np.ndarray:
        if not images:
            return np.zeros((0, self.embedding_dim), dtype=np.float32)
        return np.vstack([self.embed_image(image) for image in images])

    def get_model_info(self) -> dict:
        return {
            "model_name": self.model_name,
            "pretrained": self.pretrained,
            "device": "cpu",
            "embedding_dim": self.embedding_dim,
        }


def solid_image(color, size=(8, 8)) -> Image.Image:
    return Image.new("RGB", size, color=color)


@pytest.fixture
def registry():
    """Registry with a fake model already loaded."""
    reg = ModelRegistry(loader=FakeEmbedder)
    reg.load("fake", "none")
    return reg


@pytest.fixture
def reference_dir(tmp_path):
    """Directory of solid-color reference images, one per REFERENCE_COLORS entry."""
    images_dir = tmp_path / "reference_images"
    images_dir.mkdir()
    for i, color in enumerate(REFERENCE_COLORS):
        solid_image(color).save(images_dir / f"ref_{i:02d}.png")
    return images_dir


@pytest.fixture
def references(tmp_path, reference_dir):
    """Reference store built from reference_dir with the fake embedder."""
    store = ReferenceStore(tmp_path / "references")
    embedder = FakeEmbedder()
    paths = sorted(reference_dir.glob("*.png"))
    images = [Image.open(path).convert("RGB") for path in paths]
    store.add_references(
        embedder.embed_images_batch(images),
        [str(path) for path in paths],
        embedder.get_model_info(),
    )
    return store


@pytest.fixture
def query(registry, references):
    runner = SimilarityQuery(registry, references)
    yield runner
    runner.close()
