"""Model registry: loads, caches and reloads the embedding model."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "ViT-B-32"
DEFAULT_PRETRAINED = "openai"


class ModelUnavailableError(RuntimeError):
    """Raised when no embedding model can be used."""


@dataclass(frozen=True)
class ModelVersion:
    """Identity of the loaded model; revision increases on every load."""

    model_name: str
    pretrained: str
    revision: int


ModelLoader = Callable[[str, str], Any]
UpdateListener = Callable[[ModelVersion], None]


def load_clip_embedder(model_name: str, pretrained: str):
    """Default loader: an OpenCLIP image embedder."""
    from ..embedding.embedder import ImageEmbedder

    return ImageEmbedder(model_name=model_name, pretrained=pretrained)


class ModelRegistry:
    """Holds the current embedding model and notifies listeners on updates.

    The registry is passed to whoever needs a model instead of living as
    process-wide state, so tests and servers can each own one.
    """

    def __init__(self, loader: Optional[ModelLoader] = None):
        self._loader = loader or load_clip_embedder
        self._lock = threading.Lock()
        self._load_lock = threading.RLock()
        self._requested: Optional[Tuple[str, str]] = None
        self._embedder = None
        self._version: Optional[ModelVersion] = None
        self._revision = 0
        self._listeners: List[UpdateListener] = []

    @property
    def current(self):
        """The loaded embedder, or None."""
        with self._lock:
            return self._embedder

    @property
    def current_version(self) -> Optional[ModelVersion]:
        with self._lock:
            return self._version

    def require(self):
        """Return the loaded embedder or raise ModelUnavailableError."""
        embedder = self.current
        if embedder is None:
            raise ModelUnavailableError("No model available")
        return embedder

    def subscribe(self, listener: UpdateListener):
        """Register a callback invoked with the new version after each load."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: UpdateListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def load(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        pretrained: str = DEFAULT_PRETRAINED,
    ):
        """Load a model, reusing it if the same model/pretrained is already loaded."""
        # Check-and-swap under one lock so concurrent loads of a pair load it once
        with self._load_lock:
            with self._lock:
                self._requested = (model_name, pretrained)
                version = self._version
                if (
                    self._embedder is not None
                    and version is not None
                    and version.model_name == model_name
                    and version.pretrained == pretrained
                ):
                    logger.info(f"Model {model_name} ({pretrained}) already loaded")
                    return self._embedder

            return self._swap(model_name, pretrained)

    def reload(self):
        """Force a fresh load of the last requested model, even if it never loaded."""
        with self._load_lock:
            with self._lock:
                requested = self._requested
            if requested is None:
                raise ModelUnavailableError("No model requested yet")

            logger.info("Reloading model")
            embedder = self._swap(*requested)
            logger.info("Model reloaded")
            return embedder

    def _swap(self, model_name: str, pretrained: str):
        logger.info(f"Loading model: {model_name} ({pretrained})")
        try:
            embedder = self._loader(model_name, pretrained)
        except Exception as e:
            logger.error(f"No model available: {e}")
            raise ModelUnavailableError(f"Failed to load {model_name} ({pretrained}): {e}") from e

        if embedder is None:
            logger.error("No model available")
            raise ModelUnavailableError(f"Loader returned no model for {model_name} ({pretrained})")

        with self._lock:
            self._revision += 1
            self._embedder = embedder
            self._version = ModelVersion(model_name, pretrained, self._revision)
            version = self._version
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(version)
            except Exception:
                logger.exception(f"Model update listener {listener!r} failed")

        return embedder
