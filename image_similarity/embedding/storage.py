"""Storage for the reference image set."""

import logging
from pathlib import Path
from typing import List, Optional, Dict
import json
import numpy as np

logger = logging.getLogger(__name__)


class ReferenceStore:
    """Store and retrieve reference image embeddings.

    A reference's position in the store is its identifier: row i of the
    embedding matrix and entry i of the metadata describe reference i.
    """

    def __init__(self, store_path: Path):
        """
        Initialize reference store.

        Args:
            store_path: Directory holding the reference embeddings
        """
        self.store_path = Path(store_path)

        self.embeddings_file = self.store_path / "embeddings.npy"
        self.metadata_file = self.store_path / "metadata.json"

        self.embeddings: Optional[np.ndarray] = None
        self.metadata: List[Dict] = []

        if self.embeddings_file.exists() and self.metadata_file.exists():
            self.load()

    def add_references(
        self,
        embeddings: np.ndarray,
        file_paths: List[str],
        model_info: Dict,
    ):
        """
        Add reference images to the store.

        Args:
            embeddings: Array of embeddings, shape (n, embedding_dim)
            file_paths: List of file paths corresponding to embeddings
            model_info: Model metadata
        """
        if len(embeddings) != len(file_paths):
            raise ValueError("Number of embeddings must match number of file paths")

        if self.embeddings is not None and len(embeddings) and embeddings.shape[1] != self.embeddings.shape[1]:
            raise ValueError(
                f"Embedding dim {embeddings.shape[1]} does not match store dim {self.embeddings.shape[1]}"
            )

        new_metadata = [
            {
                "index": i + len(self.metadata),
                "file_path": str(path),
                "model_name": model_info["model_name"],
                "model_version": model_info["pretrained"],
            }
            for i, path in enumerate(file_paths)
        ]

        embeddings = np.asarray(embeddings, dtype=np.float32)
        if self.embeddings is None:
            self.embeddings = embeddings
            self.metadata = new_metadata
        else:
            self.embeddings = np.vstack([self.embeddings, embeddings])
            self.metadata.extend(new_metadata)

        logger.info(f"Added {len(embeddings)} references (total: {len(self.metadata)})")

    def save(self):
        """Save embeddings and metadata to disk."""
        if self.embeddings is None or len(self.metadata) == 0:
            logger.warning("No references to save")
            return

        self.store_path.mkdir(parents=True, exist_ok=True)
        np.save(self.embeddings_file, self.embeddings)

        with open(self.metadata_file, "w") as f:
            json.dump(self.metadata, f, indent=2)

        logger.info(f"Saved {len(self.metadata)} references to {self.store_path}")

    def clear(self):
        """Clear all references."""
        self.embeddings = None
        self.metadata = []

        if self.embeddings_file.exists():
            self.embeddings_file.unlink()
        if self.metadata_file.exists():
            self.metadata_file.unlink()

        logger.info(f"Cleared all references from {self.store_path}")

    def load(self):
        """Load embeddings and metadata from disk."""
        if not self.embeddings_file.exists() or not self.metadata_file.exists():
            logger.warning("No saved references found")
            return

        embeddings = np.load(self.embeddings_file)

        with open(self.metadata_file, "r") as f:
            metadata = json.load(f)

        if len(embeddings) != len(metadata):
            raise ValueError(
                f"Reference store is inconsistent: {len(embeddings)} embeddings, {len(metadata)} metadata entries"
            )

        self.embeddings = embeddings
        self.metadata = metadata
        logger.info(f"Loaded {len(self.metadata)} references from {self.store_path}")

    def get_path(self, index: int) -> Optional[str]:
        """
        Get the file path of a reference image.

        Args:
            index: Reference identifier

        Returns:
            File path or None if the index is out of range
        """
        if 0 <= index < len(self.metadata):
            return self.metadata[index]["file_path"]
        return None

    @property
    def file_paths(self) -> List[str]:
        return [meta["file_path"] for meta in self.metadata]

    def get_all_embeddings(self) -> np.ndarray:
        """Return the reference matrix, empty when nothing is stored."""
        if self.embeddings is None:
            return np.zeros((0, 0), dtype=np.float32)
        return self.embeddings

    def __len__(self) -> int:
        """Return number of stored references."""
        return len(self.metadata)
