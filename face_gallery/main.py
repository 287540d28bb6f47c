"""
Main Application Module

Live camera loop with single-key commands. The console is one driver of the
enrollment workflow: it turns workflow prompts into input() calls and feeds
the answers back as intents.
"""

import cv2
import numpy as np
import logging
import argparse
import time
from typing import Dict, Any, List, Optional
import sys

from .config import DEFAULT_CONFIG_PATH, load_config
from .diagnostics import format_report
from .enrollment import (
    BeginMultiEnroll,
    BeginSingleEnroll,
    Capture,
    Confirm,
    EnrollmentMode,
    EnrollmentState,
    EnrollmentUpdate,
    PromptKind,
    SubmitName,
)
from .face_regions import select_largest
from .recognizer import FaceRecognizer, RECOGNIZED, ERROR
from .backup import RestoreMode

logger = logging.getLogger(__name__)

GREEN = (0, 255, 0)
BLUE = (255, 0, 0)
RED = (0, 0, 255)
YELLOW = (0, 255, 255)
GRAY = (128, 128, 128)
WHITE = (255, 255, 255)
CYAN = (255, 255, 0)
BLACK = (0, 0, 0)

INSTRUCTIONS = [
    "- Press 'E' to enroll largest face",
    "- Press 'A' to enroll all detected faces",
    "- Press SPACE to capture while in an enroll mode",
    "- Press 'R' to start recognition mode",
    "- Press 'D' to run face recognition diagnostics",
    "- Press 'L' to list all enrolled faces",
    "- Press 'C' to clear all enrolled faces",
    "- Press 'S' to save database manually",
    "- Press 'B' to backup database",
    "- Press 'I' to import faces from backup",
    "- Press 'Q' to quit",
]


def setup_logging(config: Dict[str, Any]):
    """Configure root logging to a file and stdout."""
    logging_config = config.get('logging', {})
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if logging_config.get('file'):
        handlers.insert(0, logging.FileHandler(logging_config['file']))

    logging.basicConfig(
        level=getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


class FaceRecognitionApp:
    """Main face recognition application."""

    def __init__(self, config: Dict[str, Any], recognizer: Optional[FaceRecognizer] = None):
        """
        Initialize the face recognition application.

        Args:
            config: Configuration dictionary
            recognizer: Pre-built recognizer (built from config when omitted)
        """
        self.config = config
        self.video_config = config.get('video', {})
        self.window_name = self.video_config.get('window_name', 'Face Recognition')

        self.recognizer = recognizer if recognizer is not None else FaceRecognizer(config)
        self.workflow = self.recognizer.enrollment

        self.cap = None
        self.is_running = False
        self.recognition_mode = False

        # Performance tracking
        self.fps_counter = 0
        self.fps_start_time = time.time()
        self.current_fps = 0.0

        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self.font_scale = 0.6
        self.font_thickness = 2

        logger.info("Face recognition application initialized")

    def initialize_camera(self, camera_id: int = 0) -> bool:
        """
        Initialize video camera.

        Args:
            camera_id: Camera device ID

        Returns:
            True if camera initialized successfully
        """
        self.cap = cv2.VideoCapture(camera_id)

        if not self.cap.isOpened():
            logger.error(f"Failed to open camera {camera_id}")
            return False

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.video_config.get('frame_width', 640))
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.video_config.get('frame_height', 480))
        self.cap.set(cv2.CAP_PROP_FPS, self.video_config.get('fps', 30))

        logger.info(f"Camera {camera_id} initialized successfully")
        return True

    # Rendering

    def _status_text(self) -> str:
        if self.workflow.state == EnrollmentState.SINGLE_CAPTURE:
            return "ENROLL MODE (Largest Face) - Press SPACE"
        if self.workflow.state == EnrollmentState.MULTI_CAPTURE:
            return "ENROLL ALL FACES MODE - Face numbers will be FIXED on capture"
        if self.recognition_mode:
            return "RECOGNITION MODE"
        return "E=Enroll | A=Enroll All | R=Recognize | S=Save | B=Backup | I=Import | Q=Quit"

    def annotate_frame(self, frame: np.ndarray) -> np.ndarray:
        """
        Draw face boxes, labels and status lines on a copy of the frame.

        Args:
            frame: Input frame

        Returns:
            Annotated frame
        """
        annotated = frame.copy()
        state = self.workflow.state

        if self.recognition_mode and state == EnrollmentState.IDLE:
            results = self.recognizer.recognize_faces(frame)
            entries = []
            for face_result in results['faces']:
                number = face_result['face_number']
                if face_result['status'] == RECOGNIZED:
                    label = f"{face_result['person_name']} ({face_result['similarity']:.2f})"
                    color = BLUE
                elif face_result['status'] == ERROR:
                    label, color = f"Face {number}: Error", RED
                else:
                    label, color = f"Face {number}: Unknown", RED
                entries.append((face_result['bbox'], label, color))
            detected = results['total_faces']
        else:
            try:
                faces = self.recognizer.detector.detect(frame)
            except Exception as e:
                logger.error(f"Processing error: {e}")
                faces = []
            largest = select_largest(faces)
            entries = []
            for number, face in enumerate(faces, start=1):
                if state == EnrollmentState.SINGLE_CAPTURE:
                    if face is largest:
                        label, color = "LARGEST - Press SPACE", YELLOW
                    else:
                        label, color = f"Face {number}", GRAY
                elif state == EnrollmentState.MULTI_CAPTURE:
                    label, color = f"Face {number} - Press SPACE", YELLOW
                else:
                    label, color = f"Face {number}: Unknown", GREEN
                entries.append((face, label, color))
            detected = len(faces)

        for number, (box, label, color) in enumerate(entries, start=1):
            self._draw_face(annotated, box, label, color, number)

        self._draw_text_with_background(annotated, self._status_text(), (10, 25), WHITE, BLACK)
        db_status = "GOOD" if self.recognizer.gallery.database_file.exists() else "NOT GOOD"
        info = (f"Detected: {detected} | Known: {len(self.recognizer.gallery)} | "
                f"DB: {db_status} | FPS: {self.current_fps:.1f}")
        self._draw_text_with_background(annotated, info, (10, 55), CYAN, BLACK)

        return annotated

    def _draw_face(self, frame: np.ndarray, box, label: str, color: tuple, number: int):
        x, y, w, h = int(box.left), int(box.top), int(box.width), int(box.height)
        cv2.rectangle(frame, (x, y), (x + w, y + h), color, 2)
        self._draw_text_with_background(frame, label, (x + 5, max(15, y - 8)), color, BLACK)

        # Large face number in the middle of the box
        number_label = str(number)
        size = cv2.getTextSize(number_label, self.font, 2.0, 3)[0]
        cv2.putText(frame, number_label, (x + (w - size[0]) // 2, y + (h + size[1]) // 2),
                    self.font, 2.0, color, 3)

    def _draw_text_with_background(self, frame: np.ndarray, text: str,
                                   position: tuple, text_color: tuple, bg_color: tuple):
        """Draw text with background rectangle."""
        text_size = cv2.getTextSize(text, self.font, self.font_scale, self.font_thickness)[0]
        x, y = position

        cv2.rectangle(frame, (x - 2, y - text_size[1] - 2),
                      (x + text_size[0] + 2, y + 2), bg_color, -1)
        cv2.putText(frame, text, position, self.font, self.font_scale, text_color, self.font_thickness)

    def _update_fps(self):
        """Update FPS calculation."""
        self.fps_counter += 1
        current_time = time.time()

        if current_time - self.fps_start_time >= 1.0:
            self.current_fps = self.fps_counter / (current_time - self.fps_start_time)
            self.fps_counter = 0
            self.fps_start_time = current_time

    # Console driver

    def _print_update(self, update: EnrollmentUpdate):
        for line in update.messages:
            print(line)

    def _print_previews(self, update: EnrollmentUpdate):
        if not update.previews:
            return
        print("==================================")
        for preview in update.previews:
            box = preview.box
            print(f"  Face {preview.face_number}: {preview.position} | "
                  f"Size: {box.width:.0f}x{box.height:.0f} | Quality: {preview.quality.label}")
        print("==================================")

    def _ask(self, update: EnrollmentUpdate):
        """Turn the pending prompt into an intent by asking on the console."""
        prompt = update.prompt
        face = prompt.face

        if prompt.kind == PromptKind.CONFIRM_DUPLICATE:
            answer = input(f"Warning: Name '{prompt.name}' already exists. Continue? (y/n): ")
            return Confirm(answer.strip().lower() == 'y')

        if self.workflow.mode == EnrollmentMode.SINGLE:
            return SubmitName(input("\nEnter name for the largest face: "))

        print(f"\n--- Enrolling Face {face.face_number}/{face.total} ---")
        print(f"Position: {face.position}")
        print(f"Size: {face.box.width:.0f} x {face.box.height:.0f} pixels")
        print(f"Quality: {'Good' if face.quality.good else 'Poor - may affect recognition'}")
        keyword = self.workflow.skip_keyword
        return SubmitName(input(f"Enter name for Face {face.face_number} (or '{keyword}' to skip): "))

    def capture_for_enrollment(self, frame: np.ndarray):
        """Freeze the frame and run the enrollment session on the console."""
        print("\nCAPTURING FRAME FOR ENROLLMENT...")
        update = self.workflow.handle(Capture(frame))
        self._print_update(update)
        self._print_previews(update)

        while update.prompt is not None:
            update = self.workflow.handle(self._ask(update))
            self._print_update(update)

        if len(self.recognizer.gallery) > 0:
            self.recognition_mode = True
            print("Recognition mode activated automatically!")
        print("\nReturning to live camera feed...")

    def list_enrolled_faces(self):
        print("\nENROLLED FACES LIST")
        print("==========================")
        people = self.recognizer.list_people()
        if not people:
            print("No faces enrolled yet")
            print("Press 'A' to enroll multiple faces or 'E' to enroll single face")
            return

        info = self.recognizer.gallery.file_info()
        print(f"Total unique people: {len(people)}")
        print(f"Total face embeddings: {len(self.recognizer.gallery)}")
        print(f"Database file: {'Found' if info.exists else 'Missing'}")
        if info.exists:
            print(f"Last saved: {info.modified:%Y-%m-%d %H:%M:%S}")
            print(f"File size: {info.size_bytes / 1024.0:.1f} KB")
        print()
        for index, person in enumerate(people, start=1):
            plural = "s" if person.count > 1 else ""
            print(f"{index}. {person.name} ({person.count} embedding{plural})")

    def clear_all_faces(self):
        print("\nCLEAR ALL ENROLLED FACES")
        print(f"Currently enrolled: {len(self.recognizer.gallery)} face embeddings")
        confirmation = input("Are you sure you want to delete all enrolled faces? (type 'YES' to confirm): ")
        if confirmation.strip() != "YES":
            print("Operation cancelled")
            return

        result = self.recognizer.clear_gallery()
        if result.backup_path is not None:
            print(f"Database backed up to: {result.backup_path}")
        print("All enrolled faces cleared and database updated!" if result.saved
              else "All enrolled faces cleared, but the database could not be saved")
        self.recognition_mode = False

    def import_from_backup(self):
        print("\nIMPORT FACES FROM BACKUP")
        print("===========================")
        backups = self.recognizer.list_backups()
        if not backups:
            print("No backup files found")
            return

        print("Available backup files:")
        for index, backup in enumerate(backups, start=1):
            print(f"{index}. {backup.name} ({backup.modified:%Y-%m-%d %H:%M})")

        choice = input("Enter backup number to import (or 0 to cancel): ").strip()
        if not choice.isdigit() or not 1 <= int(choice) <= len(backups):
            print("Import cancelled")
            return

        answer = input("Merge with current faces (M) or Replace all (R)? ")
        try:
            mode = RestoreMode.parse(answer)
        except ValueError:
            print("Import cancelled")
            return

        result = self.recognizer.restore(backups[int(choice) - 1], mode)
        if not result.success:
            print(f"Import failed: {result.error}")
            return
        for name in result.skipped_duplicates:
            print(f"Skipping duplicate: {name}")
        for reason in result.skipped_invalid:
            print(f"Skipping invalid entry: {reason}")
        print(f"Imported {result.imported} faces")
        print(f"Total faces: {result.before_count} -> {result.after_count}")

    def handle_key(self, key: int, frame: np.ndarray) -> bool:
        """
        Act on one key press.

        Returns:
            False when the application should stop
        """
        if key in (ord('e'), ord('E')):
            self.recognition_mode = False
            self._print_update(self.workflow.handle(BeginSingleEnroll()))
        elif key in (ord('a'), ord('A')):
            self.recognition_mode = False
            self._print_update(self.workflow.handle(BeginMultiEnroll()))
            print("Make sure all people are visible and positioned properly!")
        elif key == ord(' '):
            if self.workflow.state in (EnrollmentState.SINGLE_CAPTURE, EnrollmentState.MULTI_CAPTURE):
                self.capture_for_enrollment(frame)
        elif key in (ord('r'), ord('R')):
            self.recognition_mode = True
            print("\nRecognition mode activated")
        elif key in (ord('d'), ord('D')):
            print("Running face recognition diagnostics...")
            report = self.recognizer.diagnose(frame)
            print(format_report(report) if report is not None else "Diagnostic failed")
        elif key in (ord('l'), ord('L')):
            self.list_enrolled_faces()
        elif key in (ord('c'), ord('C')):
            self.clear_all_faces()
        elif key in (ord('s'), ord('S')):
            print("Manually saving database...")
            self.recognizer.save_system_state()
        elif key in (ord('b'), ord('B')):
            path = self.recognizer.backup()
            print(f"Database backed up to: {path}" if path else "Backup failed or nothing to back up")
        elif key in (ord('i'), ord('I')):
            self.import_from_backup()
        elif key in (ord('q'), ord('Q')):
            logger.info("Quit requested by user")
            return False
        return True

    def run_recognition_loop(self):
        """Run the main capture-and-render loop."""
        if self.cap is None:
            logger.error("Camera not initialized")
            return

        print("Camera opened successfully!")
        print("Instructions:")
        for line in INSTRUCTIONS:
            print(line)

        self.is_running = True
        logger.info("Starting face recognition loop")

        try:
            while self.is_running:
                ret, frame = self.cap.read()
                if not ret or frame is None:
                    continue

                annotated_frame = self.annotate_frame(frame)
                cv2.imshow(self.window_name, annotated_frame)
                self._update_fps()

                key = cv2.waitKey(1) & 0xFF
                if key != 0xFF and not self.handle_key(key, frame):
                    break

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self._cleanup()

    def _cleanup(self):
        """Release the camera and save the gallery."""
        self.is_running = False

        if self.cap is not None:
            self.cap.release()

        cv2.destroyAllWindows()

        print("Saving database before exit...")
        self.recognizer.save_system_state()

        logger.info("Application cleanup completed")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Face Recognition with JSON Storage')
    parser.add_argument('--config', '-c', default=DEFAULT_CONFIG_PATH,
                        help='Configuration file path')
    parser.add_argument('--camera', type=int, default=None,
                        help='Camera device ID')
    parser.add_argument('--database', '-d', type=str,
                        help='Gallery JSON file (overrides storage.database_file)')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config)
    if args.database:
        config['storage']['database_file'] = args.database

    camera_id = args.camera if args.camera is not None else config.get('video', {}).get('camera_id', 0)

    app = FaceRecognitionApp(config)
    if not app.initialize_camera(camera_id):
        print("Cannot open camera!")
        return 1

    app.run_recognition_loop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
