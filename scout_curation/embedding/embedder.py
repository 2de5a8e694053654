"""Photo embedding generation using CLIP models."""

import logging
from typing import Optional

import numpy as np
import open_clip
import torch
from PIL import Image

logger = logging.getLogger(__name__)


def detect_device() -> str:
    """Best available torch device."""
    if torch.cuda.is_available():
        return "cuda"
    if torch.backends.mps.is_available():
        return "mps"
    return "cpu"


class ClipEmbedder:
    """Fixed-length image embeddings from an OpenCLIP vision tower."""

    def __init__(
        self,
        model_name: str = "ViT-B-32",
        pretrained: str = "openai",
        device: Optional[str] = None,
    ):
        """
        Load model weights.

        Args:
            model_name: CLIP model architecture
            pretrained: Pretrained weights to use
            device: Device to use (cuda/mps/cpu), auto-detected if None
        """
        self.model_name = model_name
        self.pretrained = pretrained
        self.device = torch.device(device or detect_device())

        logger.info(f"Loading model: {model_name} ({pretrained}) on {self.device}")
        self.model, _, self.preprocess = open_clip.create_model_and_transforms(
            model_name,
            pretrained=pretrained,
            device=self.device,
        )
        self.model.eval()
        logger.info("Model loaded successfully")

    @property
    def embedding_dim(self) -> int:
        return int(self.model.visual.output_dim)

    def embed(self, image: Image.Image) -> np.ndarray:
        """
        Generate an embedding for one image.

        Args:
            image: RGB PIL image

        Returns:
            Float32 vector of length ``embedding_dim`` (not normalized)
        """
        image_tensor = self.preprocess(image).unsqueeze(0).to(self.device)

        with torch.no_grad():
            embedding = self.model.encode_image(image_tensor)

        return embedding.cpu().numpy().astype(np.float32).squeeze(0)
