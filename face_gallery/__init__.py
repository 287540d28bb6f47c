"""
Face identity gallery: enrollment, matching and JSON persistence of face embeddings.

The OpenCV/DeepFace detector and the FaceNet/face_recognition embedder live in
face_gallery.face_detector and face_gallery.embedding_generator and are only
imported when a FaceRecognizer is built without injected components.
"""

from .backup import BackupInfo, BackupManager, RestoreMode, RestoreResult
from .config import build_config, get_default_config, load_config
from .diagnostics import DiagnosticReport, Diagnostics, format_report
from .enrollment import (
    BeginMultiEnroll,
    BeginSingleEnroll,
    Cancel,
    Capture,
    Confirm,
    EnrollmentState,
    EnrollmentWorkflow,
    SubmitName,
)
from .errors import (
    DimensionMismatchError,
    EmbeddingError,
    EnrollmentStateError,
    FaceGalleryError,
    GalleryFormatError,
)
from .face_regions import FaceBox
from .gallery import EmbeddingRecord, IdentityGallery, PersonSummary
from .matcher import FaceMatcher, Match, find_best_match
from .recognizer import FaceRecognizer
from .similarity import embedding_stats, similarity

__version__ = "1.0.0"
