"""
Diagnostics Module

Read-only analysis of the faces in one captured frame: embedding quality,
similarity against every enrolled record and, when nothing matches, a
threshold that would have accepted the closest record.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .face_regions import FaceBox, QualityVerdict, check_face_quality, extract_face_region
from .gallery import DatabaseFileInfo, IdentityGallery
from .matcher import FaceMatcher, Match
from .similarity import EmbeddingStats, embedding_stats

logger = logging.getLogger(__name__)

MATCH = "MATCH"
WEAK = "WEAK"
MAYBE = "MAYBE"
NO_MATCH = "NO MATCH"

TIPS = [
    "If similarity scores are 0.45-0.55, try lowering threshold",
    "If embedding magnitude is not 1.0, check face extraction",
    "If std dev < 0.03, face might be too blurry",
    "Consider enrolling multiple angles for better recognition",
]


@dataclass(frozen=True)
class PersonSimilarity:
    name: str
    max_similarity: float
    avg_similarity: float
    count: int
    bucket: str


@dataclass
class FaceDiagnosis:
    face_number: int
    box: FaceBox
    quality: QualityVerdict
    stats: Optional[EmbeddingStats] = None
    concerns: List[str] = field(default_factory=list)
    people: List[PersonSimilarity] = field(default_factory=list)
    match: Optional[Match] = None
    highest_similarity: Optional[float] = None
    suggested_threshold: Optional[float] = None
    error: Optional[str] = None


@dataclass
class DiagnosticReport:
    faces: List[FaceDiagnosis]
    gallery_size: int
    threshold: float
    database: Optional[DatabaseFileInfo] = None
    tips: List[str] = field(default_factory=lambda: list(TIPS))

    @property
    def face_count(self) -> int:
        return len(self.faces)


class Diagnostics:
    """Produces DiagnosticReports without ever changing the gallery."""

    def __init__(self, gallery: IdentityGallery, detector: Any, embedder: Any,
                 matcher: FaceMatcher, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.gallery = gallery
        self.detector = detector
        self.embedder = embedder
        self.matcher = matcher

        diag_config = config.get('diagnostics', {})
        self.quality_config = config.get('quality', {})
        self.padding = int(config.get('enrollment', {}).get('padding', 20))
        self.magnitude_tolerance = float(diag_config.get('magnitude_tolerance', 0.01))
        self.min_std = float(diag_config.get('min_std', 0.03))
        self.weak_threshold = float(diag_config.get('weak_threshold', 0.45))
        self.maybe_threshold = float(diag_config.get('maybe_threshold', 0.35))
        self.threshold_floor = float(diag_config.get('threshold_floor', 0.3))
        self.threshold_margin = float(diag_config.get('threshold_margin', 0.05))

    def bucket(self, score: float) -> str:
        """Qualitative label for a similarity score."""
        if score > self.matcher.threshold:
            return MATCH
        if score > self.weak_threshold:
            return WEAK
        if score > self.maybe_threshold:
            return MAYBE
        return NO_MATCH

    def suggest_threshold(self, highest_similarity: float) -> float:
        return max(self.threshold_floor, highest_similarity - self.threshold_margin)

    def embedding_concerns(self, stats: EmbeddingStats) -> List[str]:
        concerns = []
        if not stats.is_normalized(self.magnitude_tolerance):
            concerns.append(f"magnitude {stats.magnitude:.3f} is not close to 1.0")
        if stats.std <= self.min_std:
            concerns.append(f"low variation (std dev {stats.std:.4f}); face might be too blurry")
        return concerns

    def analyze_embedding(self, vector: Any, diagnosis: FaceDiagnosis) -> FaceDiagnosis:
        """Fill in stats and gallery comparison for one embedding."""
        diagnosis.stats = embedding_stats(vector)
        diagnosis.concerns = self.embedding_concerns(diagnosis.stats)

        scored = self.matcher.score_all(vector, self.gallery)
        if not scored:
            return diagnosis

        per_name: Dict[str, List[float]] = {}
        for record, score in scored:
            per_name.setdefault(record.name, []).append(score)

        diagnosis.people = [
            PersonSimilarity(
                name=name,
                max_similarity=max(scores),
                avg_similarity=float(np.mean(scores)),
                count=len(scores),
                bucket=self.bucket(max(scores)),
            )
            for name, scores in per_name.items()
        ]

        diagnosis.match = self.matcher.match(vector, self.gallery)
        if diagnosis.match is None:
            diagnosis.highest_similarity = max(score for _, score in scored)
            diagnosis.suggested_threshold = self.suggest_threshold(diagnosis.highest_similarity)

        return diagnosis

    def run(self, image: np.ndarray) -> DiagnosticReport:
        """
        Analyze every face in an image.

        Args:
            image: Captured frame

        Returns:
            DiagnosticReport; per-face failures are recorded on that face
        """
        report = DiagnosticReport(
            faces=[],
            gallery_size=len(self.gallery),
            threshold=self.matcher.threshold,
            database=self.gallery.file_info(),
        )

        if image is None or getattr(image, 'size', 0) == 0:
            return report

        frozen = np.array(image, copy=True)
        img_h, img_w = frozen.shape[:2]
        faces = list(self.detector.detect(frozen))
        logger.info(f"Diagnostics: {len(faces)} face(s) detected")

        for number, face in enumerate(faces, start=1):
            diagnosis = FaceDiagnosis(
                face_number=number,
                box=face,
                quality=check_face_quality(face, img_w, img_h, self.quality_config),
            )
            report.faces.append(diagnosis)

            region = extract_face_region(frozen, face, self.padding)
            if region is None:
                diagnosis.error = "could not extract face region"
                continue

            try:
                vector = self.embedder.embed(region)
            except Exception as e:
                logger.error(f"Failed to analyze face {number}: {e}")
                diagnosis.error = str(e)
                continue

            self.analyze_embedding(vector, diagnosis)

        return report


def format_report(report: DiagnosticReport) -> str:
    """Render a DiagnosticReport as console text."""
    lines = [
        "FACE RECOGNITION DIAGNOSTICS",
        "==================================",
        f"Faces detected: {report.face_count}",
    ]
    if not report.faces:
        lines.append("No faces detected for diagnostics")

    for face in report.faces:
        box = face.box
        lines.append("")
        lines.append(f"--- Face {face.face_number} Analysis ---")
        lines.append(f"Face size: {box.width:.0f}x{box.height:.0f} (area: {box.area:.0f})")
        quality = face.quality.label
        if face.quality.reasons:
            quality += f" ({'; '.join(face.quality.reasons)})"
        lines.append(f"Face quality: {quality}")

        if face.error:
            lines.append(f"Failed to analyze face {face.face_number}: {face.error}")
            continue

        stats = face.stats
        lines.append("Embedding stats:")
        lines.append(f"  Magnitude: {stats.magnitude:.3f}")
        lines.append(f"  Mean: {stats.mean:.6f}")
        lines.append(f"  Std Dev: {stats.std:.6f}")
        for concern in face.concerns:
            lines.append(f"  Concern: {concern}")

        if report.gallery_size == 0:
            lines.append("No known faces enrolled for comparison")
            continue

        lines.append(f"Similarity comparison against {report.gallery_size} known faces:")
        for person in face.people:
            lines.append(
                f"  {person.name}: Max={person.max_similarity:.3f}, Avg={person.avg_similarity:.3f}, "
                f"Count={person.count} {person.bucket}"
            )

        if face.match is not None:
            lines.append(f"Algorithm result: {face.match.name} ({face.match.similarity:.3f})")
        else:
            lines.append(f"Algorithm result: NO MATCH (threshold: {report.threshold:.2f})")
            if face.highest_similarity is not None:
                lines.append(f"Highest similarity found: {face.highest_similarity:.3f}")
                lines.append(f"Suggested threshold: {face.suggested_threshold:.3f}")

    lines.append("")
    lines.append("=============================")
    lines.append("Diagnostic Tips:")
    lines.extend(f"- {tip}" for tip in report.tips)
    lines.append("Database info:")
    database = report.database
    if database is not None and database.exists:
        modified = f"{database.modified:%Y-%m-%d %H:%M}" if database.modified else "unknown"
        lines.append(f"- Database file: {database.size_bytes / 1024.0:.1f} KB, modified {modified}")
    else:
        lines.append("- Database file: Not found")

    return "\n".join(lines)
