"""Cache of extracted photo embeddings, reusable across analysis runs."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class EmbeddingStore:
    """Embeddings keyed by (photo id, image URI), optionally saved to disk."""

    def __init__(self, store_path: Optional[Path] = None):
        """
        Initialize embedding store.

        Args:
            store_path: Directory for ``embeddings.npy`` + ``metadata.json``;
                purely in-memory when None
        """
        self.store_path = store_path
        self._entries: Dict[Tuple[str, str], np.ndarray] = {}

        if store_path is not None:
            self.embeddings_file = store_path / "embeddings.npy"
            self.metadata_file = store_path / "metadata.json"
            if self.embeddings_file.exists() and self.metadata_file.exists():
                self.load()

    def get(self, photo_id: str, image_uri: str) -> Optional[np.ndarray]:
        return self._entries.get((photo_id, image_uri))

    def put(self, photo_id: str, image_uri: str, embedding: np.ndarray) -> None:
        self._entries[(photo_id, image_uri)] = np.asarray(embedding, dtype=np.float32)

    def clear(self) -> None:
        self._entries.clear()

    def save(self) -> None:
        """Save embeddings and metadata to disk."""
        if self.store_path is None:
            raise ValueError("EmbeddingStore has no store_path to save to")
        if not self._entries:
            logger.warning("No embeddings to save")
            return

        self.store_path.mkdir(parents=True, exist_ok=True)
        keys: List[Tuple[str, str]] = list(self._entries)
        np.save(self.embeddings_file, np.vstack([self._entries[k] for k in keys]))

        with open(self.metadata_file, "w") as f:
            json.dump([{"photo_id": pid, "image_uri": uri} for pid, uri in keys], f, indent=2)

        logger.info(f"Saved {len(keys)} embeddings to {self.store_path}")

    def load(self) -> None:
        """Load embeddings and metadata from disk."""
        embeddings = np.load(self.embeddings_file)
        with open(self.metadata_file, "r") as f:
            metadata = json.load(f)

        if len(metadata) != len(embeddings):
            logger.warning(f"Embedding cache at {self.store_path} is inconsistent, ignoring it")
            return

        for meta, vector in zip(metadata, embeddings):
            self._entries[(meta["photo_id"], meta["image_uri"])] = vector

        logger.info(f"Loaded {len(metadata)} embeddings from {self.store_path}")

    def __len__(self) -> int:
        return len(self._entries)
