"""
Stand-in detector and embedder used by the tests.
"""

import os
import sys

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_gallery.config import build_config
from face_gallery.face_regions import FaceBox


def unit(*values):
    """Unit-length float32 vector."""
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


def blank_frame(width=640, height=480):
    return np.zeros((height, width, 3), dtype=np.uint8)


def make_config(test_dir, **sections):
    """Default configuration with the database inside test_dir."""
    overrides = {'storage': {'database_file': os.path.join(test_dir, 'face_database.json')}}
    for name, values in sections.items():
        overrides.setdefault(name, {}).update(values)
    return build_config(overrides)


class FakeDetector:
    """Returns a fixed list of boxes, or raises the given error."""

    def __init__(self, boxes=None, error=None):
        self.boxes = list(boxes or [])
        self.error = error
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.boxes)


class FakeEmbedder:
    """
    Returns the given vectors in order, repeating the last one.

    An exception in the list is raised instead of returned.
    """

    def __init__(self, *vectors):
        self.vectors = list(vectors)
        self.regions = []

    def embed(self, face_image):
        self.regions.append(face_image)
        index = min(len(self.regions), len(self.vectors)) - 1
        item = self.vectors[index]
        if isinstance(item, Exception):
            raise item
        return np.asarray(item, dtype=np.float32)


# Three well-placed, non-overlapping faces in a 640x480 frame
LEFT_FACE = FaceBox(40, 150, 100, 100)
MIDDLE_FACE = FaceBox(270, 150, 120, 120)
RIGHT_FACE = FaceBox(500, 150, 100, 100)
