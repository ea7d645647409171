"""Image embedding generation using CLIP models."""

import logging
from typing import List, Optional

import numpy as np
import torch
from PIL import Image
import open_clip

logger = logging.getLogger(__name__)


class ImageEmbedder:
    """Generate image embeddings using CLIP-based models."""

    def __init__(
        self,
        model_name: str = "ViT-B-32",
        pretrained: str = "openai",
        device: Optional[str] = None,
    ):
        """
        Initialize embedder.

        Args:
            model_name: CLIP model architecture
            pretrained: Pretrained weights to use
            device: Device to use (cuda/mps/cpu), auto-detected if None
        """
        self.model_name = model_name
        self.pretrained = pretrained

        if device is None:
            if torch.cuda.is_available():
                device = "cuda"
            elif torch.backends.mps.is_available():
                device = "mps"
            else:
                device = "cpu"

        self.device = torch.device(device)
        logger.info(f"Using device: {self.device}")

        logger.info(f"Loading model: {model_name} ({pretrained})")
        self.model, _, self.preprocess = open_clip.create_model_and_transforms(
            model_name,
            pretrained=pretrained,
            device=self.device,
        )
        self.model.eval()

        logger.info("Model loaded successfully")

    def embed_image(self, image: Image.Image) -> np.ndarray:
        """
        Generate embedding for a single image.

        Args:
            image: PIL Image

        Returns:
            Normalized embedding vector
        """
        # Center crop happens inside the CLIP preprocess transform
        image_tensor = self.preprocess(image).unsqueeze(0).to(self.device)

        with torch.no_grad():
            embedding = self.model.encode_image(image_tensor)
            embedding = embedding / embedding.norm(dim=-1, keepdim=True)
            embedding = embedding.cpu().numpy().squeeze()

        return embedding.astype(np.float32)

    def embed_images_batch(
        self,
        images: List[Image.Image],
        batch_size: int = 32,
    ) -> np.ndarray:
        """
        Generate embeddings for multiple images.

        Args:
            images: List of PIL Images
            batch_size: Batch size for processing

        Returns:
            Array of embeddings, shape (n_images, embedding_dim)
        """
        embeddings = []

        for i in range(0, len(images), batch_size):
            batch = images[i:i + batch_size]

            image_tensors = torch.stack([
                self.preprocess(img) for img in batch
            ]).to(self.device)

            with torch.no_grad():
                batch_embeddings = self.model.encode_image(image_tensors)
                batch_embeddings = batch_embeddings / batch_embeddings.norm(dim=-1, keepdim=True)
                batch_embeddings = batch_embeddings.cpu().numpy()
                embeddings.append(batch_embeddings)

        if not embeddings:
            return np.zeros((0, self.embedding_dim), dtype=np.float32)
        return np.vstack(embeddings).astype(np.float32)

    @property
    def embedding_dim(self) -> int:
        return int(self.model.visual.output_dim)

    def get_model_info(self) -> dict:
        """Get model information."""
        return {
            "model_name": self.model_name,
            "pretrained": self.pretrained,
            "device": str(self.device),
            "embedding_dim": self.embedding_dim,
        }
