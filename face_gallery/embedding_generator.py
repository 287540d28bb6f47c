"""
Embedding Generation Module

Default embedder: converts cropped face images to L2-normalized vectors using
FaceNet (facenet-pytorch, 512 dimensions) or the face_recognition library
(dlib ResNet, 128 dimensions).
"""

import numpy as np
import logging
from typing import Optional, Dict, Any
import face_recognition
from facenet_pytorch import MTCNN, InceptionResnetV1
import torch
from PIL import Image
import cv2

from .errors import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """Generate face embeddings using various models."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize embedding generator.

        Args:
            config: Configuration dictionary with embedding settings
        """
        self.config = config.get('embedding', {})
        self.model_name = self.config.get('model', 'facenet')
        self.normalization = self.config.get('normalization', True)

        self.model = None
        self.device = torch.device('cpu')

        self._initialize_model()
        logger.info(f"Embedding generator initialized with model: {self.model_name}")

    @property
    def embedding_size(self) -> int:
        return 512 if self.model_name == 'facenet' else 128

    def _initialize_model(self):
        """Initialize the selected embedding model."""
        try:
            if self.model_name == 'facenet':
                self._initialize_facenet()
            elif self.model_name == 'face_recognition':
                # face_recognition library uses dlib's ResNet model
                logger.info("Using face_recognition library (dlib ResNet)")
            else:
                raise ValueError(f"Unsupported embedding model: {self.model_name}")

        except Exception as e:
            logger.error(f"Failed to initialize embedding model: {e}")
            self.model_name = 'face_recognition'
            logger.info("Falling back to face_recognition library")

    def _initialize_facenet(self):
        """Initialize FaceNet model."""
        self.model = InceptionResnetV1(pretrained='vggface2').eval().to(self.device)
        self.mtcnn_resnet = MTCNN(
            image_size=160, margin=0, min_face_size=20,
            thresholds=[0.6, 0.7, 0.7], factor=0.709, post_process=True,
            device=self.device
        )
        logger.info("FaceNet model loaded successfully")

    def embed(self, face_image: np.ndarray) -> np.ndarray:
        """
        Generate an embedding, raising when none can be produced.

        Args:
            face_image: Cropped face image (BGR)

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the model produced no embedding
        """
        embedding = self.generate_embedding(face_image)
        if embedding is None:
            raise EmbeddingError("No embedding could be generated for this face")
        return embedding

    def generate_embedding(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """
        Generate embedding from face image.

        Args:
            face_image: Cropped face image (BGR)

        Returns:
            Embedding vector or None if generation fails
        """
        if face_image is None or face_image.size == 0:
            return None

        try:
            if self.model_name == 'facenet':
                return self._generate_facenet_embedding(face_image)
            return self._generate_face_recognition_embedding(face_image)
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            return None

    def _generate_facenet_embedding(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """Generate embedding using FaceNet."""
        if face_image.dtype != np.uint8:
            face_image = np.clip(face_image, 0, 255).astype(np.uint8)

        if len(face_image.shape) == 3 and face_image.shape[2] == 3:
            face_image = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)

        pil_image = Image.fromarray(face_image)

        # MTCNN aligns, resizes and standardizes the crop
        face_tensor = self.mtcnn_resnet(pil_image)

        if face_tensor is None:
            logger.warning("MTCNN preprocessing failed")
            return None

        if face_tensor.dim() == 3:
            face_tensor = face_tensor.unsqueeze(0)

        face_tensor = face_tensor.to(self.device)

        with torch.no_grad():
            embedding = self.model(face_tensor)
            embedding = embedding.cpu().numpy().flatten()

        if self.normalization:
            embedding = self.normalize_embedding(embedding)

        return embedding.astype(np.float32)

    def _generate_face_recognition_embedding(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """Generate embedding using face_recognition library."""
        if face_image.dtype != np.uint8:
            face_image = np.clip(face_image, 0, 255).astype(np.uint8)

        if len(face_image.shape) == 3:
            rgb_image = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)
        else:
            rgb_image = face_image

        # The crop is already a face; skip a second detection pass
        h, w = rgb_image.shape[:2]
        encodings = face_recognition.face_encodings(rgb_image, known_face_locations=[(0, w, h, 0)])

        if len(encodings) == 0:
            logger.warning("No face encoding generated")
            return None

        embedding = encodings[0]

        if self.normalization:
            embedding = self.normalize_embedding(embedding)

        return np.asarray(embedding, dtype=np.float32)

    def normalize_embedding(self, embedding: np.ndarray) -> np.ndarray:
        """
        Normalize embedding vector using L2 normalization.

        Args:
            embedding: Raw embedding vector

        Returns:
            Normalized embedding vector
        """
        if embedding is None or len(embedding) == 0:
            return embedding

        norm = np.linalg.norm(embedding)
        if norm == 0:
            return embedding

        return embedding / norm
