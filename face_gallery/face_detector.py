"""
Face Detection Module

Default face detector: OpenCV Haar cascades or DeepFace detector backends.
Returns pixel-space bounding boxes in the order the backend reports them.
"""

import cv2
import numpy as np
import logging
from typing import List, Dict, Any

from .face_regions import FaceBox

logger = logging.getLogger(__name__)


class FaceDetector:
    """Face detection returning FaceBox bounding boxes."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize face detector.

        Args:
            config: Configuration dictionary with face detection settings
        """
        self.config = config.get('face_detection', {})
        self.method = self.config.get('method', 'haar')
        self.min_face_size = self.config.get('min_face_size', 40)
        self.min_confidence = self.config.get('min_confidence', 0.0)

        if self.method == 'deepface':
            # Only this method needs the models extra
            from deepface import DeepFace
            self.deepface = DeepFace
            self.detector_backend = self.config.get('detector_backend', 'opencv')
        elif self.method == 'haar':
            self.detector = cv2.CascadeClassifier(
                cv2.data.haarcascades + 'haarcascade_frontalface_default.xml'
            )
        else:
            logger.warning(f"Unsupported detection method: {self.method}, falling back to haar")
            self.method = 'haar'
            self.detector = cv2.CascadeClassifier(
                cv2.data.haarcascades + 'haarcascade_frontalface_default.xml'
            )

        logger.info(f"Face detector initialized with method: {self.method}")

    def detect(self, image: np.ndarray) -> List[FaceBox]:
        """
        Detect faces in an image.

        Args:
            image: Input image as numpy array (BGR format)

        Returns:
            List of face bounding boxes; empty when no face is found
        """
        if image is None or image.size == 0:
            return []

        if self.method == 'deepface':
            return self._detect_deepface(image)
        return self._detect_haar(image)

    def _detect_deepface(self, image: np.ndarray) -> List[FaceBox]:
        """Detect faces using a DeepFace detector backend."""
        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

        face_objs = self.deepface.extract_faces(
            img_path=rgb_image,
            detector_backend=self.detector_backend,
            enforce_detection=False,
            align=False
        )

        img_h, img_w = image.shape[:2]
        faces = []
        for face_obj in face_objs or []:
            area = face_obj.get('facial_area') or {}
            w = area.get('w', 0)
            h = area.get('h', 0)
            confidence = float(face_obj.get('confidence') or 0.0)

            # With enforce_detection=False DeepFace reports the whole frame when nothing is found
            if w <= 0 or h <= 0 or (w >= img_w and h >= img_h):
                continue
            if confidence < self.min_confidence:
                continue

            faces.append(FaceBox.from_xywh([area.get('x', 0), area.get('y', 0), w, h], confidence))

        return faces

    def _detect_haar(self, image: np.ndarray) -> List[FaceBox]:
        """Detect faces using Haar Cascades."""
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        faces_rect = self.detector.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            minSize=(self.min_face_size, self.min_face_size)
        )

        return [FaceBox.from_xywh([x, y, w, h]) for (x, y, w, h) in faces_rect]
