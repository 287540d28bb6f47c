"""
Face Recognition Module

Owns the identity gallery and wires the matcher, enrollment workflow,
diagnostics and backup manager around it. Also runs the per-frame
recognition pass used by the live video loop.
"""

import numpy as np
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any, Union

from .backup import BackupInfo, BackupManager, RestoreMode, RestoreResult
from .diagnostics import DiagnosticReport, Diagnostics
from .enrollment import EnrollmentWorkflow
from .face_regions import extract_face_region
from .gallery import IdentityGallery, PersonSummary
from .matcher import FaceMatcher

logger = logging.getLogger(__name__)

RECOGNIZED = 'recognized'
UNKNOWN = 'unknown'
ERROR = 'error'


@dataclass
class ClearResult:
    removed: int
    backup_path: Optional[Path]
    saved: bool


def _new_stats() -> Dict[str, Any]:
    return {
        'total_detections': 0,
        'successful_recognitions': 0,
        'unknown_faces': 0,
        'failed_embeddings': 0,
        'session_start': datetime.now().isoformat()
    }


class FaceRecognizer:
    """Main face recognition system combining all components."""

    def __init__(self, config: Dict[str, Any], detector: Any = None, embedder: Any = None,
                 gallery: Optional[IdentityGallery] = None, load: bool = True):
        """
        Initialize face recognizer.

        Args:
            config: Configuration dictionary
            detector: Face detector (defaults to FaceDetector built from config)
            embedder: Embedding generator (defaults to EmbeddingGenerator built from config)
            gallery: Existing gallery to use instead of a new one
            load: Load the gallery from disk during construction
        """
        self.config = config
        self.recognition_config = config.get('recognition', {})
        self.padding = int(config.get('enrollment', {}).get('padding', 20))

        if detector is None:
            from .face_detector import FaceDetector
            detector = FaceDetector(config)
        if embedder is None:
            from .embedding_generator import EmbeddingGenerator
            embedder = EmbeddingGenerator(config)

        self.detector = detector
        self.embedder = embedder
        self.gallery = gallery if gallery is not None else IdentityGallery(config)
        if load:
            self.gallery.load()

        self.matcher = FaceMatcher(config)
        self.enrollment = EnrollmentWorkflow(self.gallery, self.detector, self.embedder, config)
        self.diagnostics = Diagnostics(self.gallery, self.detector, self.embedder, self.matcher, config)
        self.backup_manager = BackupManager(self.gallery, config)

        self.stats = _new_stats()

        logger.info("Face recognizer initialized successfully")

    @property
    def similarity_threshold(self) -> float:
        return self.matcher.threshold

    def recognize_faces(self, frame: np.ndarray) -> Dict[str, Any]:
        """
        Complete face recognition pass for a single frame.

        Args:
            frame: Input frame/image

        Returns:
            Recognition results with detected faces and identities
        """
        results = {
            'timestamp': datetime.now().isoformat(),
            'faces': [],
            'total_faces': 0,
            'recognized_faces': 0,
        }
        if frame is None or frame.size == 0:
            return results

        try:
            faces = self.detector.detect(frame)
        except Exception as e:
            logger.error(f"Face detection failed: {e}")
            return results

        results['total_faces'] = len(faces)
        self.stats['total_detections'] += len(faces)

        for number, face in enumerate(faces, start=1):
            face_result = self._recognize_single_face(frame, face, number)
            results['faces'].append(face_result)
            if face_result['status'] == RECOGNIZED:
                results['recognized_faces'] += 1

        return results

    def _recognize_single_face(self, frame: np.ndarray, face, number: int) -> Dict[str, Any]:
        result = {
            'face_number': number,
            'bbox': face,
            'person_name': None,
            'similarity': 0.0,
            'status': UNKNOWN,
            'error': None
        }

        if len(self.gallery) == 0:
            return result

        region = extract_face_region(frame, face, self.padding)
        if region is None:
            result.update({'status': ERROR, 'error': 'could not extract face region'})
            return result

        try:
            embedding = self.embedder.embed(region)
        except Exception as e:
            logger.error(f"Recognition error for face {number}: {e}")
            self.stats['failed_embeddings'] += 1
            result.update({'status': ERROR, 'error': str(e)})
            return result

        match = self.matcher.match(embedding, self.gallery)
        if match is not None:
            result.update({
                'person_name': match.name,
                'similarity': match.similarity,
                'status': RECOGNIZED
            })
            self.stats['successful_recognitions'] += 1
        else:
            self.stats['unknown_faces'] += 1

        return result

    def diagnose(self, image: np.ndarray) -> Optional[DiagnosticReport]:
        """
        Run diagnostics on a captured frame.

        Returns:
            DiagnosticReport, or None if face detection failed
        """
        try:
            return self.diagnostics.run(image)
        except Exception as e:
            logger.error(f"Diagnostic failed: {e}")
            return None

    def clear_gallery(self) -> ClearResult:
        """
        Remove all enrolled faces, backing up the current file first.

        Returns:
            ClearResult with the number removed and the backup path (if any)
        """
        backup_path = None
        if len(self.gallery) > 0:
            logger.info("Creating backup before clearing...")
            backup_path = self.backup_manager.backup()

        removed = self.gallery.clear()
        saved = self.gallery.save()
        return ClearResult(removed=removed, backup_path=backup_path, saved=saved)

    def backup(self) -> Optional[Path]:
        return self.backup_manager.backup()

    def list_backups(self, limit: Optional[int] = None) -> List[BackupInfo]:
        return self.backup_manager.list_backups(limit)

    def restore(self, source: Union[str, Path, BackupInfo],
                mode: Union[RestoreMode, str] = RestoreMode.MERGE) -> RestoreResult:
        return self.backup_manager.restore(source, mode)

    def list_people(self) -> List[PersonSummary]:
        """Enrolled people with their embedding counts."""
        return self.gallery.query()

    def get_recognition_statistics(self) -> Dict[str, Any]:
        """Get recognition system statistics."""
        people = self.gallery.query()
        detections = max(1, self.stats['total_detections'])

        return {
            **self.stats,
            'total_embeddings': len(self.gallery),
            'total_people': len(people),
            'embedding_dimension': self.gallery.embedding_dimension,
            'similarity_threshold': self.similarity_threshold,
            'recognition_rate': self.stats['successful_recognitions'] / detections,
            'embedding_success_rate': (
                (self.stats['total_detections'] - self.stats['failed_embeddings']) / detections
            )
        }

    def reset_statistics(self):
        """Reset recognition statistics."""
        self.stats = _new_stats()

    def save_system_state(self) -> bool:
        """Save the gallery to disk."""
        saved = self.gallery.save()
        if saved:
            logger.info("System state saved")
        return saved
