"""
Unit tests for FaceRecognizer module.
"""

import unittest
import os
import sys
import tempfile
import shutil
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_gallery.errors import EmbeddingError
from face_gallery.gallery import read_document
from face_gallery.recognizer import FaceRecognizer, RECOGNIZED, UNKNOWN, ERROR
from helpers import FakeDetector, FakeEmbedder, LEFT_FACE, RIGHT_FACE, blank_frame, make_config, unit


class TestFaceRecognizer(unittest.TestCase):
    """Test cases for FaceRecognizer class."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.config = make_config(self.test_dir, recognition={'similarity_threshold': 0.7})
        self.db_path = self.config['storage']['database_file']

    def tearDown(self):
        """Clean up test fixtures."""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def _recognizer(self, boxes=None, *vectors):
        detector = FakeDetector(boxes if boxes is not None else [LEFT_FACE])
        embedder = FakeEmbedder(*(vectors or (unit(1, 0),)))
        return FaceRecognizer(self.config, detector=detector, embedder=embedder)

    def test_recognizer_initialization(self):
        recognizer = self._recognizer()
        self.assertEqual(recognizer.similarity_threshold, 0.7)
        self.assertEqual(len(recognizer.gallery), 0)
        # A missing database file is created on load
        self.assertTrue(os.path.exists(self.db_path))

    def test_recognize_known_face(self):
        recognizer = self._recognizer([LEFT_FACE], unit(1, 0))
        recognizer.gallery.append("Alice", unit(1, 0))

        results = recognizer.recognize_faces(blank_frame())

        self.assertEqual(results['total_faces'], 1)
        self.assertEqual(results['recognized_faces'], 1)
        face = results['faces'][0]
        self.assertEqual(face['status'], RECOGNIZED)
        self.assertEqual(face['person_name'], "Alice")
        self.assertAlmostEqual(face['similarity'], 1.0, places=5)
        self.assertEqual(face['bbox'], LEFT_FACE)

    def test_unknown_face(self):
        recognizer = self._recognizer([LEFT_FACE, RIGHT_FACE], unit(1, 0), unit(0, 1))
        recognizer.gallery.append("Alice", unit(1, 0))

        results = recognizer.recognize_faces(blank_frame())

        self.assertEqual([f['status'] for f in results['faces']], [RECOGNIZED, UNKNOWN])
        self.assertIsNone(results['faces'][1]['person_name'])
        self.assertEqual(recognizer.stats['unknown_faces'], 1)

    def test_empty_gallery_skips_embedding(self):
        recognizer = self._recognizer([LEFT_FACE])
        results = recognizer.recognize_faces(blank_frame())
        self.assertEqual(results['faces'][0]['status'], UNKNOWN)
        self.assertEqual(recognizer.embedder.regions, [])

    def test_embedding_failure_is_reported_per_face(self):
        recognizer = self._recognizer([LEFT_FACE], EmbeddingError("no embedding"))
        recognizer.gallery.append("Alice", unit(1, 0))

        face = recognizer.recognize_faces(blank_frame())['faces'][0]
        self.assertEqual(face['status'], ERROR)
        self.assertEqual(face['error'], "no embedding")
        self.assertEqual(recognizer.stats['failed_embeddings'], 1)

    def test_detector_failure(self):
        recognizer = FaceRecognizer(self.config, detector=FakeDetector(error=RuntimeError("boom")),
                                    embedder=FakeEmbedder(unit(1, 0)))
        results = recognizer.recognize_faces(blank_frame())
        self.assertEqual(results['total_faces'], 0)
        self.assertIsNone(recognizer.diagnose(blank_frame()))

    def test_clear_gallery_backs_up_first(self):
        recognizer = self._recognizer()
        recognizer.gallery.append("Alice", unit(1, 0))
        recognizer.gallery.append("Bob", unit(0, 1))
        recognizer.gallery.save()

        order = []
        original_backup = recognizer.backup_manager.backup
        original_clear = recognizer.gallery.clear

        def backup():
            order.append('backup')
            return original_backup()

        def clear():
            order.append('clear')
            return original_clear()

        with mock.patch.object(recognizer.backup_manager, 'backup', side_effect=backup), \
                mock.patch.object(recognizer.gallery, 'clear', side_effect=clear):
            result = recognizer.clear_gallery()

        self.assertEqual(order, ['backup', 'clear'])
        self.assertEqual(result.removed, 2)
        self.assertTrue(result.saved)
        self.assertEqual(len(read_document(result.backup_path).records), 2)
        self.assertEqual(read_document(self.db_path).records, [])

    def test_clear_empty_gallery_makes_no_backup(self):
        recognizer = self._recognizer()
        result = recognizer.clear_gallery()
        self.assertIsNone(result.backup_path)
        self.assertEqual(recognizer.list_backups(), [])

    def test_backup_and_restore_round_trip(self):
        recognizer = self._recognizer()
        recognizer.gallery.append("Alice", unit(1, 0))
        recognizer.save_system_state()
        path = recognizer.backup()

        recognizer.clear_gallery()
        result = recognizer.restore(path, "replace")

        self.assertTrue(result.success)
        self.assertEqual([p.name for p in recognizer.list_people()], ["Alice"])

    def test_statistics(self):
        recognizer = self._recognizer([LEFT_FACE], unit(1, 0))
        recognizer.gallery.append("Alice", unit(1, 0))
        recognizer.recognize_faces(blank_frame())

        stats = recognizer.get_recognition_statistics()
        self.assertEqual(stats['total_detections'], 1)
        self.assertEqual(stats['successful_recognitions'], 1)
        self.assertEqual(stats['total_people'], 1)
        self.assertEqual(stats['embedding_dimension'], 2)
        self.assertEqual(stats['recognition_rate'], 1.0)

        recognizer.reset_statistics()
        self.assertEqual(recognizer.stats['total_detections'], 0)

    def test_loads_existing_gallery(self):
        first = self._recognizer()
        first.gallery.append("Alice", unit(1, 0))
        first.save_system_state()

        second = self._recognizer()
        self.assertEqual(len(second.gallery), 1)


if __name__ == '__main__':
    unittest.main()
