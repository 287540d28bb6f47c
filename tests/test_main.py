"""
Unit tests for the console/camera application driver.
"""

import unittest
import glob
import os
import sys
import tempfile
import shutil
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_gallery.enrollment import EnrollmentState
from face_gallery.gallery import read_document
from face_gallery.main import FaceRecognitionApp, main
from face_gallery.recognizer import FaceRecognizer
from helpers import FakeDetector, FakeEmbedder, LEFT_FACE, MIDDLE_FACE, blank_frame, make_config, unit


class TestFaceRecognitionApp(unittest.TestCase):
    """Test cases for FaceRecognitionApp key handling."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.config = make_config(self.test_dir)
        self.db_path = self.config['storage']['database_file']
        self.recognizer = FaceRecognizer(self.config, detector=FakeDetector([LEFT_FACE, MIDDLE_FACE]),
                                         embedder=FakeEmbedder(unit(1, 0), unit(0, 1)))
        self.app = FaceRecognitionApp(self.config, recognizer=self.recognizer)
        self.frame = blank_frame()

    def tearDown(self):
        """Clean up test fixtures."""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def test_quit_key(self):
        self.assertFalse(self.app.handle_key(ord('q'), self.frame))
        self.assertTrue(self.app.handle_key(ord('x'), self.frame))

    def test_single_enroll_from_keys(self):
        self.app.handle_key(ord('e'), self.frame)
        self.assertEqual(self.app.workflow.state, EnrollmentState.SINGLE_CAPTURE)

        with mock.patch('builtins.input', return_value="Alice"):
            self.app.handle_key(ord(' '), self.frame)

        self.assertEqual([r.name for r in self.recognizer.gallery.records], ["Alice"])
        self.assertEqual(self.app.workflow.state, EnrollmentState.IDLE)
        self.assertTrue(self.app.recognition_mode)

    def test_multi_enroll_with_duplicate_confirmation(self):
        self.recognizer.gallery.append("Alice", unit(1, 0))
        self.app.handle_key(ord('a'), self.frame)

        with mock.patch('builtins.input', side_effect=["Alice", "y", "skip"]):
            self.app.handle_key(ord(' '), self.frame)

        self.assertEqual([r.name for r in self.recognizer.gallery.records], ["Alice", "Alice"])

    def test_space_outside_enroll_mode_does_nothing(self):
        with mock.patch('builtins.input') as fake_input:
            self.app.handle_key(ord(' '), self.frame)
        fake_input.assert_not_called()

    def test_clear_requires_exact_confirmation(self):
        self.recognizer.gallery.append("Alice", unit(1, 0))

        with mock.patch('builtins.input', return_value="yes"):
            self.app.clear_all_faces()
        self.assertEqual(len(self.recognizer.gallery), 1)

        with mock.patch('builtins.input', return_value="YES"):
            self.app.clear_all_faces()
        self.assertEqual(len(self.recognizer.gallery), 0)

    def test_import_from_backup(self):
        self.recognizer.gallery.append("Alice", unit(1, 0))
        self.recognizer.save_system_state()
        self.recognizer.backup()
        self.recognizer.gallery.clear()

        with mock.patch('builtins.input', side_effect=["1", "R"]):
            self.app.import_from_backup()
        self.assertEqual([r.name for r in self.recognizer.gallery.records], ["Alice"])

    def test_import_cancelled(self):
        self.recognizer.gallery.save()
        self.recognizer.backup()
        self.recognizer.gallery.append("Bob", unit(0, 1))

        with mock.patch('builtins.input', side_effect=["0"]):
            self.app.import_from_backup()
        self.assertEqual(len(self.recognizer.gallery), 1)

    def test_annotate_frame_leaves_input_untouched(self):
        self.recognizer.gallery.append("Alice", unit(1, 0))
        self.app.recognition_mode = True

        annotated = self.app.annotate_frame(self.frame)

        self.assertEqual(annotated.shape, self.frame.shape)
        self.assertEqual(int(self.frame.max()), 0)
        self.assertGreater(int(annotated.max()), 0)

    @mock.patch('face_gallery.main.cv2.destroyAllWindows')
    def test_cleanup_saves_gallery(self, _destroy):
        self.recognizer.gallery.append("Alice", unit(1, 0))
        self.app.cap = mock.Mock()

        self.app._cleanup()

        self.app.cap.release.assert_called_once()
        self.assertEqual([r.name for r in read_document(self.db_path).records], ["Alice"])

    @mock.patch('face_gallery.main.cv2.destroyAllWindows')
    def test_cleanup_after_failed_load_keeps_unreadable_file(self, _destroy):
        broken = '{"faces": [{"name": "Alice", "embeddings": [0.6, 0.8]'
        with open(self.db_path, 'w') as f:
            f.write(broken)
        recognizer = FaceRecognizer(self.config, detector=FakeDetector(), embedder=FakeEmbedder(unit(1, 0)))
        app = FaceRecognitionApp(self.config, recognizer=recognizer)

        app._cleanup()

        backups = glob.glob(os.path.join(self.test_dir, 'face_database_backup_*.json'))
        self.assertEqual(len(backups), 1)
        with open(backups[0]) as f:
            self.assertEqual(f.read(), broken)

    @mock.patch('face_gallery.main.cv2.destroyAllWindows')
    @mock.patch('face_gallery.main.cv2.imshow')
    @mock.patch('face_gallery.main.cv2.waitKey', return_value=ord('q'))
    def test_quit_key_ends_loop_and_saves(self, _wait, _show, _destroy):
        self.recognizer.gallery.append("Alice", unit(1, 0))
        self.app.cap = mock.Mock()
        self.app.cap.read.return_value = (True, self.frame)

        self.app.run_recognition_loop()

        self.assertFalse(self.app.is_running)
        self.assertEqual(len(read_document(self.db_path).records), 1)


class TestMainEntryPoint(unittest.TestCase):
    """Test cases for the command line entry point."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.test_dir, 'config.yaml')
        with open(self.config_path, 'w') as f:
            f.write(f"storage:\n  database_file: {os.path.join(self.test_dir, 'face_database.json')}\n")

    def tearDown(self):
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    @mock.patch('face_gallery.main.setup_logging')
    @mock.patch('face_gallery.main.cv2.VideoCapture')
    def test_unavailable_camera_exits_with_error(self, video_capture, _logging):
        video_capture.return_value.isOpened.return_value = False

        def build_recognizer(config):
            return FaceRecognizer(config, detector=FakeDetector(), embedder=FakeEmbedder(unit(1, 0)))

        with mock.patch('face_gallery.main.FaceRecognizer', side_effect=build_recognizer):
            exit_code = main(['--config', self.config_path, '--camera', '3'])

        self.assertEqual(exit_code, 1)
        video_capture.assert_called_once_with(3)


if __name__ == '__main__':
    unittest.main()
