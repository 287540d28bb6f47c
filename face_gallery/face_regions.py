"""
Face region helpers: bounding boxes, cropping, quality and position checks.

Everything here works on plain numpy images and pixel-space boxes, so it has
no dependency on any particular detector.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

DEFAULT_PADDING = 20


@dataclass(frozen=True)
class FaceBox:
    """Axis-aligned face bounding box in image pixel space."""
    left: float
    top: float
    width: float
    height: float
    confidence: Optional[float] = None

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.left + self.width / 2, self.top + self.height / 2)

    @classmethod
    def from_xywh(cls, bbox: Sequence[float], confidence: Optional[float] = None) -> 'FaceBox':
        x, y, w, h = bbox
        return cls(float(x), float(y), float(w), float(h), confidence)


@dataclass(frozen=True)
class QualityVerdict:
    good: bool
    reasons: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return "Good" if self.good else "Poor"


def select_largest(faces: Sequence[FaceBox]) -> Optional[FaceBox]:
    """Largest box by area; the earliest one wins a tie."""
    largest = None
    for face in faces:
        if largest is None or face.area > largest.area:
            largest = face
    return largest


def extract_face_region(image: np.ndarray, box: FaceBox,
                        padding: int = DEFAULT_PADDING) -> Optional[np.ndarray]:
    """
    Crop a face with fixed pixel padding, clamped to the image.

    Args:
        image: Source image (H x W or H x W x C)
        box: Face bounding box
        padding: Pixels added on each side

    Returns:
        Copy of the cropped region, or None if it is empty
    """
    if image is None or image.size == 0:
        return None

    img_h, img_w = image.shape[:2]
    left = max(0, int(box.left) - padding)
    top = max(0, int(box.top) - padding)
    right = min(img_w, int(box.left) + int(box.width) + padding)
    bottom = min(img_h, int(box.top) + int(box.height) + padding)

    if right <= left or bottom <= top:
        return None

    return image[top:bottom, left:right].copy()


def check_face_quality(box: FaceBox, image_width: int, image_height: int,
                       config: Optional[Dict[str, Any]] = None) -> QualityVerdict:
    """
    Judge whether a face box is suitable for enrollment.

    A face is good when it is at least 80x80 pixels, stays 20 pixels clear of
    every image edge and has a width/height ratio in [0.6, 1.6]. The verdict
    is advisory.

    Args:
        box: Face bounding box
        image_width: Width of the source image
        image_height: Height of the source image
        config: Optional 'quality' config section overriding the limits

    Returns:
        QualityVerdict with the reasons for a poor verdict
    """
    config = config or {}
    min_size = config.get('min_face_size', 80)
    margin = config.get('edge_margin', 20)
    min_aspect = config.get('min_aspect_ratio', 0.6)
    max_aspect = config.get('max_aspect_ratio', 1.6)

    reasons = []
    if box.width < min_size or box.height < min_size:
        reasons.append(f"too small ({box.width:.0f}x{box.height:.0f} < {min_size}x{min_size})")

    if (box.left < margin or box.top < margin
            or box.right > image_width - margin
            or box.bottom > image_height - margin):
        reasons.append("too close to image edge")

    aspect = box.width / box.height if box.height > 0 else 0.0
    if aspect < min_aspect or aspect > max_aspect:
        reasons.append(f"unusual aspect ratio ({aspect:.2f})")

    return QualityVerdict(good=not reasons, reasons=reasons)


def describe_face_position(box: FaceBox, image_width: int, image_height: int) -> str:
    """
    Human-readable size and location of a face, e.g. "Large face, Left-Top".
    """
    center_x, center_y = box.center

    if center_x < image_width * 0.33:
        horizontal = "Left"
    elif center_x > image_width * 0.67:
        horizontal = "Right"
    else:
        horizontal = "Center"

    if center_y < image_height * 0.33:
        vertical = "Top"
    elif center_y > image_height * 0.67:
        vertical = "Bottom"
    else:
        vertical = "Middle"

    image_area = image_width * image_height
    relative_size = box.area / image_area if image_area > 0 else 0.0
    if relative_size > 0.15:
        size = "Large"
    elif relative_size > 0.05:
        size = "Medium"
    else:
        size = "Small"

    return f"{size} face, {horizontal}-{vertical}"
