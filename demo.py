#!/usr/bin/env python3
"""
Face Gallery Demo

Shows the gallery programmatically without a camera or model downloads:
fixed face boxes stand in for a detector and a color-keyed vector stands in
for an embedding model.
"""

import os
import sys
import tempfile

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from face_gallery import (
    BeginMultiEnroll,
    Capture,
    FaceBox,
    FaceRecognizer,
    RestoreMode,
    SubmitName,
    build_config,
    format_report,
)


class FixedBoxDetector:
    """Reports the same boxes for every frame."""

    def __init__(self, boxes):
        self.boxes = list(boxes)

    def detect(self, image):
        return list(self.boxes)


class ColorEmbedder:
    """Maps the dominant color channel of a crop to a unit vector."""

    def __init__(self, dimension=8):
        self.dimension = dimension

    def embed(self, face_image):
        vector = np.full(self.dimension, 0.05, dtype=np.float32)
        channel = int(np.argmax(face_image.reshape(-1, face_image.shape[-1]).mean(axis=0)))
        vector[channel] = 1.0
        return vector / np.linalg.norm(vector)


def create_demo_frame():
    """Two colored 'faces' on a dark background."""
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    frame[100:260, 80:220] = (200, 40, 40)     # blue-ish face on the left
    frame[120:280, 400:540] = (40, 40, 200)    # red-ish face on the right
    return frame


def demo_face_gallery():
    """Demonstrate enrollment, recognition, diagnostics and backups."""
    print("Face Gallery Demo")
    print("=" * 40)

    workdir = tempfile.mkdtemp()
    config = build_config({
        'storage': {'database_file': os.path.join(workdir, 'face_database.json')},
    })

    boxes = [FaceBox(80, 100, 140, 160), FaceBox(400, 120, 140, 160)]
    recognizer = FaceRecognizer(config, detector=FixedBoxDetector(boxes), embedder=ColorEmbedder())
    print(f"Gallery file: {recognizer.gallery.database_file}")

    frame = create_demo_frame()

    print("\nEnrolling every face in the frame...")
    workflow = recognizer.enrollment
    workflow.handle(BeginMultiEnroll())
    update = workflow.handle(Capture(frame))
    for preview in update.previews:
        print(f"- Face {preview.face_number}: {preview.position} ({preview.quality.label})")
    for name in ["Alice", "Bob"]:
        update = workflow.handle(SubmitName(name))
        for line in update.messages:
            print(line)

    print("\nRecognizing faces...")
    results = recognizer.recognize_faces(frame)
    for face in results['faces']:
        print(f"- Face {face['face_number']}: {face['person_name']} ({face['similarity']:.2f})")

    print()
    print(format_report(recognizer.diagnose(frame)))

    print("\nBacking up and restoring...")
    backup_path = recognizer.backup()
    print(f"Backup written to {backup_path}")
    cleared = recognizer.clear_gallery()
    print(f"Cleared {cleared.removed} embeddings")
    result = recognizer.restore(backup_path, RestoreMode.REPLACE)
    print(f"Restored {result.imported} embeddings ({result.before_count} -> {result.after_count})")

    stats = recognizer.get_recognition_statistics()
    print(f"\nPeople enrolled: {stats['total_people']}, embeddings: {stats['total_embeddings']}")
    print("\nDemo completed successfully!")


def show_usage():
    """Show how to use the system."""
    print("\nFace Gallery Usage:")
    print("=" * 40)
    print("\n1. Install dependencies:")
    print("   pip install -e .[models]")
    print("\n2. Run the system:")
    print("   python main.py                    # Default camera")
    print("   python main.py --camera 1         # Specific camera")
    print("   python main.py --config my.yaml   # Custom configuration")
    print("\n3. Keys in the camera window:")
    print("   e - Enroll the largest face (SPACE to capture)")
    print("   a - Enroll every visible face (SPACE to capture)")
    print("   r - Recognition mode")
    print("   d - Diagnostics for the current frame")
    print("   l - List enrolled people")
    print("   c - Clear all faces (backed up first)")
    print("   s - Save database")
    print("   b - Backup database")
    print("   i - Import faces from a backup")
    print("   q - Quit")


if __name__ == '__main__':
    if len(sys.argv) > 1 and sys.argv[1] == '--usage':
        show_usage()
    else:
        demo_face_gallery()
        print("\nRun 'python demo.py --usage' for usage instructions")
