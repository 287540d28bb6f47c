"""
Unit tests for recognition diagnostics.
"""

import unittest
import numpy as np
import os
import sys
import tempfile
import shutil

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_gallery.diagnostics import (
    Diagnostics,
    FaceDiagnosis,
    MATCH,
    MAYBE,
    NO_MATCH,
    WEAK,
    format_report,
)
from face_gallery.errors import EmbeddingError
from face_gallery.face_regions import QualityVerdict
from face_gallery.gallery import IdentityGallery
from face_gallery.matcher import FaceMatcher
from face_gallery.similarity import embedding_stats
from helpers import FakeDetector, FakeEmbedder, LEFT_FACE, RIGHT_FACE, blank_frame, make_config, unit


class TestDiagnostics(unittest.TestCase):
    """Test cases for Diagnostics."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.config = make_config(self.test_dir)
        self.gallery = IdentityGallery(self.config)
        self.gallery.append("Alice", [1.0, 0.0])
        self.gallery.append("Alice", [0.8, 0.6])
        self.gallery.append("Bob", [0.0, 1.0])
        self.matcher = FaceMatcher(self.config)

    def tearDown(self):
        """Clean up test fixtures."""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def _diagnostics(self, detector=None, embedder=None):
        return Diagnostics(self.gallery, detector or FakeDetector(), embedder or FakeEmbedder(unit(1, 0)),
                           self.matcher, self.config)

    def _diagnosis(self):
        return FaceDiagnosis(face_number=1, box=LEFT_FACE, quality=QualityVerdict(True))

    def test_buckets(self):
        diagnostics = self._diagnostics()
        self.assertEqual(diagnostics.bucket(0.6), MATCH)
        self.assertEqual(diagnostics.bucket(0.5), WEAK)
        self.assertEqual(diagnostics.bucket(0.4), MAYBE)
        self.assertEqual(diagnostics.bucket(0.3), NO_MATCH)
        self.assertEqual(diagnostics.bucket(0.55), WEAK)

    def test_suggested_threshold(self):
        diagnostics = self._diagnostics()
        self.assertAlmostEqual(diagnostics.suggest_threshold(0.5), 0.45)
        self.assertAlmostEqual(diagnostics.suggest_threshold(0.2), 0.3)

    def test_embedding_concerns(self):
        diagnostics = self._diagnostics()
        self.assertEqual(diagnostics.embedding_concerns(embedding_stats(unit(0.6, 0.8))), [])

        concerns = diagnostics.embedding_concerns(embedding_stats(np.full(4, 0.1)))
        self.assertEqual(len(concerns), 2)

    def test_per_person_summary_and_match(self):
        diagnosis = self._diagnostics().analyze_embedding(np.array([0.6, 0.8]), self._diagnosis())

        people = {p.name: p for p in diagnosis.people}
        self.assertEqual(list(people), ["Alice", "Bob"])
        self.assertEqual(people["Alice"].count, 2)
        self.assertAlmostEqual(people["Alice"].max_similarity, 0.96, places=5)
        self.assertAlmostEqual(people["Alice"].avg_similarity, 0.78, places=5)
        self.assertEqual(people["Alice"].bucket, MATCH)
        self.assertEqual(diagnosis.match.name, "Alice")
        self.assertIsNone(diagnosis.suggested_threshold)

    def test_no_match_suggests_threshold(self):
        self.matcher.threshold = 0.99
        diagnosis = self._diagnostics().analyze_embedding(np.array([0.6, 0.8]), self._diagnosis())

        self.assertIsNone(diagnosis.match)
        self.assertAlmostEqual(diagnosis.highest_similarity, 0.96, places=5)
        self.assertAlmostEqual(diagnosis.suggested_threshold, 0.91, places=5)

    def test_empty_gallery(self):
        self.gallery.clear()
        diagnosis = self._diagnostics().analyze_embedding(np.array([0.6, 0.8]), self._diagnosis())
        self.assertEqual(diagnosis.people, [])
        self.assertIsNone(diagnosis.match)
        self.assertIsNone(diagnosis.highest_similarity)

    def test_run_does_not_change_gallery(self):
        before = self.gallery.snapshot()
        detector = FakeDetector([LEFT_FACE, RIGHT_FACE])
        embedder = FakeEmbedder(unit(0.6, 0.8), EmbeddingError("no embedding"))
        report = self._diagnostics(detector, embedder).run(blank_frame())

        self.assertEqual(self.gallery.snapshot(), before)
        self.assertFalse(os.path.exists(self.config['storage']['database_file']))
        self.assertEqual(report.face_count, 2)
        self.assertEqual(report.gallery_size, 3)
        self.assertIsNone(report.faces[0].error)
        self.assertEqual(report.faces[1].error, "no embedding")

    def test_run_without_faces(self):
        report = self._diagnostics().run(blank_frame())
        self.assertEqual(report.face_count, 0)
        self.assertIn("No faces detected for diagnostics", format_report(report))

    def test_format_report(self):
        self.matcher.threshold = 0.99
        report = self._diagnostics(FakeDetector([LEFT_FACE]), FakeEmbedder(unit(0.6, 0.8))).run(blank_frame())
        text = format_report(report)

        self.assertIn("--- Face 1 Analysis ---", text)
        self.assertIn("Alice: Max=0.960", text)
        self.assertIn("Suggested threshold: 0.910", text)
        self.assertIn("Database file: Not found", text)


if __name__ == '__main__':
    unittest.main()
