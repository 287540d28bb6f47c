"""
Enrollment Workflow Module

Finite-state controller for enrolling faces from a single captured frame.
It consumes intents (begin, capture, name, confirm, cancel) and answers each
one with an EnrollmentUpdate describing what happened and what it needs next,
so any front end (console, GUI, test harness) can drive it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import EnrollmentStateError
from .face_regions import (
    FaceBox,
    QualityVerdict,
    check_face_quality,
    describe_face_position,
    extract_face_region,
    select_largest,
)
from .gallery import IdentityGallery
from .similarity import embedding_stats

logger = logging.getLogger(__name__)


class EnrollmentState(Enum):
    IDLE = 'idle'
    SINGLE_CAPTURE = 'single_capture'
    MULTI_CAPTURE = 'multi_capture'
    AWAITING_NAME = 'awaiting_name'
    AWAITING_CONFIRMATION = 'awaiting_confirmation'


class EnrollmentMode(Enum):
    SINGLE = 'single'
    MULTI = 'multi'


# Intents

@dataclass(frozen=True)
class BeginSingleEnroll:
    pass


@dataclass(frozen=True)
class BeginMultiEnroll:
    pass


@dataclass(frozen=True, eq=False)
class Capture:
    image: np.ndarray


@dataclass(frozen=True)
class SubmitName:
    text: Optional[str]


@dataclass(frozen=True)
class Confirm:
    accepted: bool


@dataclass(frozen=True)
class Cancel:
    pass


# Results

class FaceStatus(Enum):
    ENROLLED = 'enrolled'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass
class FaceOutcome:
    """What happened to one face of an enrollment session."""
    face_number: int
    status: FaceStatus
    name: Optional[str] = None
    reason: Optional[str] = None
    magnitude: Optional[float] = None


@dataclass(frozen=True)
class FacePreview:
    face_number: int
    total: int
    box: FaceBox
    position: str
    quality: QualityVerdict


class PromptKind(Enum):
    NAME = 'name'
    CONFIRM_DUPLICATE = 'confirm_duplicate'


@dataclass(frozen=True)
class Prompt:
    """Input the workflow is waiting for."""
    kind: PromptKind
    face: FacePreview
    name: Optional[str] = None
    allow_skip: bool = False


@dataclass
class BatchSummary:
    mode: EnrollmentMode
    total_faces: int
    before_count: int
    after_count: int = 0
    outcomes: List[FaceOutcome] = field(default_factory=list)
    saved: bool = False
    cancelled: bool = False

    def _count(self, status: FaceStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def enrolled(self) -> int:
        return self._count(FaceStatus.ENROLLED)

    @property
    def skipped(self) -> int:
        return self._count(FaceStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FaceStatus.FAILED)

    @property
    def added(self) -> int:
        return self.after_count - self.before_count


@dataclass
class EnrollmentUpdate:
    state: EnrollmentState
    prompt: Optional[Prompt] = None
    messages: List[str] = field(default_factory=list)
    previews: List[FacePreview] = field(default_factory=list)
    outcome: Optional[FaceOutcome] = None
    summary: Optional[BatchSummary] = None


class EnrollmentWorkflow:
    """Session-scoped enrollment state machine over an IdentityGallery."""

    def __init__(self, gallery: IdentityGallery, detector: Any, embedder: Any,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the workflow.

        Args:
            gallery: Gallery that receives new records
            detector: Object with detect(image) -> List[FaceBox]
            embedder: Object with embed(face_image) -> vector
            config: Configuration dictionary (enrollment and quality sections)
        """
        config = config or {}
        self.gallery = gallery
        self.detector = detector
        self.embedder = embedder

        enrollment_config = config.get('enrollment', {})
        self.quality_config = config.get('quality', {})
        self.padding = int(enrollment_config.get('padding', 20))
        self.skip_keyword = str(enrollment_config.get('skip_keyword', 'skip'))
        self.magnitude_tolerance = float(enrollment_config.get('magnitude_tolerance', 0.1))

        self.state = EnrollmentState.IDLE
        self._reset()

    def _reset(self):
        self.state = EnrollmentState.IDLE
        self._mode: Optional[EnrollmentMode] = None
        self._image: Optional[np.ndarray] = None
        self._faces: List[FaceBox] = []
        self._previews: List[FacePreview] = []
        self._index = 0
        self._pending_name: Optional[str] = None
        self._summary: Optional[BatchSummary] = None

    @property
    def mode(self) -> Optional[EnrollmentMode]:
        return self._mode

    @property
    def frozen_image(self) -> Optional[np.ndarray]:
        return self._image

    @property
    def is_active(self) -> bool:
        return self.state != EnrollmentState.IDLE

    def handle(self, intent: Any) -> EnrollmentUpdate:
        """
        Apply one intent.

        Args:
            intent: BeginSingleEnroll, BeginMultiEnroll, Capture, SubmitName,
                Confirm or Cancel

        Returns:
            EnrollmentUpdate for the new state

        Raises:
            EnrollmentStateError: If the intent is not valid in the current state
        """
        if isinstance(intent, Cancel):
            return self._cancel()

        if isinstance(intent, (BeginSingleEnroll, BeginMultiEnroll)):
            if self.state not in (EnrollmentState.IDLE,
                                  EnrollmentState.SINGLE_CAPTURE,
                                  EnrollmentState.MULTI_CAPTURE):
                raise self._invalid(intent)
            return self._begin(EnrollmentMode.SINGLE if isinstance(intent, BeginSingleEnroll)
                               else EnrollmentMode.MULTI)

        if isinstance(intent, Capture):
            if self.state not in (EnrollmentState.SINGLE_CAPTURE, EnrollmentState.MULTI_CAPTURE):
                raise self._invalid(intent)
            return self._capture(intent.image)

        if isinstance(intent, SubmitName):
            if self.state != EnrollmentState.AWAITING_NAME:
                raise self._invalid(intent)
            return self._submit_name(intent.text)

        if isinstance(intent, Confirm):
            if self.state != EnrollmentState.AWAITING_CONFIRMATION:
                raise self._invalid(intent)
            return self._confirm(bool(intent.accepted))

        raise EnrollmentStateError(f"Unknown intent: {intent!r}")

    def _invalid(self, intent: Any) -> EnrollmentStateError:
        return EnrollmentStateError(
            f"{type(intent).__name__} is not valid in state {self.state.value}"
        )

    def _begin(self, mode: EnrollmentMode) -> EnrollmentUpdate:
        self._reset()
        self._mode = mode
        if mode == EnrollmentMode.SINGLE:
            self.state = EnrollmentState.SINGLE_CAPTURE
            message = "Enroll mode: capture to enroll the largest face"
        else:
            self.state = EnrollmentState.MULTI_CAPTURE
            message = "Enroll all mode: capture to enroll every visible face"
        logger.info(message)
        return EnrollmentUpdate(state=self.state, messages=[message])

    def _preview(self, face: FaceBox, number: int, total: int, image: np.ndarray) -> FacePreview:
        img_h, img_w = image.shape[:2]
        return FacePreview(
            face_number=number,
            total=total,
            box=face,
            position=describe_face_position(face, img_w, img_h),
            quality=check_face_quality(face, img_w, img_h, self.quality_config),
        )

    def _name_prompt(self) -> Prompt:
        return Prompt(
            kind=PromptKind.NAME,
            face=self._previews[self._index],
            allow_skip=self._mode == EnrollmentMode.MULTI,
        )

    def _capture(self, image: np.ndarray) -> EnrollmentUpdate:
        if image is None or getattr(image, 'size', 0) == 0:
            self._reset()
            return EnrollmentUpdate(state=self.state, messages=["No frame available for enrollment"])

        # Face positions come only from this copy.
        frozen = np.array(image, copy=True)
        mode = self._mode

        try:
            faces = list(self.detector.detect(frozen))
        except Exception as e:
            logger.error(f"Face detection failed during enrollment: {e}")
            self._reset()
            return EnrollmentUpdate(state=self.state, messages=[f"Face detection failed: {e}"])

        if not faces:
            logger.info("No faces detected in captured frame")
            self._reset()
            return EnrollmentUpdate(state=self.state, messages=["No faces detected in captured frame"])

        self._image = frozen
        before = len(self.gallery)

        if mode == EnrollmentMode.SINGLE:
            largest = select_largest(faces)
            self._faces = [largest]
            self._previews = [self._preview(largest, 1, 1, frozen)]
            messages = [f"Found {len(faces)} face(s); enrolling the largest"]
        else:
            self._faces = faces
            self._previews = [self._preview(face, i + 1, len(faces), frozen)
                              for i, face in enumerate(faces)]
            messages = [f"Found {len(faces)} face(s) - positions are now fixed"]

        self._summary = BatchSummary(mode=mode, total_faces=len(self._faces), before_count=before)
        self._index = 0
        self.state = EnrollmentState.AWAITING_NAME
        logger.info(messages[0])

        return EnrollmentUpdate(
            state=self.state,
            prompt=self._name_prompt(),
            messages=messages,
            previews=list(self._previews),
        )

    def _submit_name(self, text: Optional[str]) -> EnrollmentUpdate:
        name = (text or '').strip()
        number = self._index + 1

        if self._mode == EnrollmentMode.SINGLE:
            if not name:
                outcome = FaceOutcome(number, FaceStatus.SKIPPED, reason="empty name")
                return self._advance(outcome, ["Invalid name - enrollment cancelled"])
            return self._enroll_current(name)

        if not name:
            outcome = FaceOutcome(number, FaceStatus.SKIPPED, reason="empty name")
            return self._advance(outcome, [f"Skipped Face {number} (empty name)"])

        if name.lower() == self.skip_keyword.lower():
            outcome = FaceOutcome(number, FaceStatus.SKIPPED, reason="skipped by user")
            return self._advance(outcome, [f"Skipped Face {number} by user choice"])

        if name in self.gallery.names():
            self._pending_name = name
            self.state = EnrollmentState.AWAITING_CONFIRMATION
            return EnrollmentUpdate(
                state=self.state,
                prompt=Prompt(kind=PromptKind.CONFIRM_DUPLICATE,
                              face=self._previews[self._index], name=name),
                messages=[f"Name '{name}' already exists"],
            )

        return self._enroll_current(name)

    def _confirm(self, accepted: bool) -> EnrollmentUpdate:
        name = self._pending_name
        self._pending_name = None

        if not accepted:
            outcome = FaceOutcome(self._index + 1, FaceStatus.SKIPPED, name=name,
                                  reason="duplicate name declined")
            return self._advance(outcome, [f"Skipped Face {self._index + 1}"])

        return self._enroll_current(name)

    def _enroll_current(self, name: str) -> EnrollmentUpdate:
        number = self._index + 1
        face = self._faces[self._index]
        messages: List[str] = []

        region = extract_face_region(self._image, face, self.padding)
        if region is None:
            outcome = FaceOutcome(number, FaceStatus.FAILED, name=name,
                                  reason="could not extract face region")
            logger.warning(f"Failed to enroll Face {number}: {outcome.reason}")
            return self._advance(outcome, [f"Failed to enroll Face {number}: {outcome.reason}"])

        try:
            vector = self.embedder.embed(region)
            stats = embedding_stats(vector)
            self.gallery.append(name, vector)
        except Exception as e:
            logger.error(f"Failed to enroll Face {number}: {e}")
            outcome = FaceOutcome(number, FaceStatus.FAILED, name=name, reason=str(e))
            return self._advance(outcome, [f"Failed to enroll Face {number}: {e}"])

        if abs(stats.magnitude - 1.0) > self.magnitude_tolerance:
            messages.append(f"Warning: Embedding quality may be poor (magnitude: {stats.magnitude:.3f})")

        outcome = FaceOutcome(number, FaceStatus.ENROLLED, name=name, magnitude=stats.magnitude)
        messages.append(f"Face {number} enrolled as '{name}' (total: {len(self.gallery)})")
        logger.info(messages[-1])
        return self._advance(outcome, messages)

    def _advance(self, outcome: FaceOutcome, messages: List[str]) -> EnrollmentUpdate:
        self._summary.outcomes.append(outcome)
        self._index += 1

        if self._index < len(self._faces):
            self.state = EnrollmentState.AWAITING_NAME
            return EnrollmentUpdate(
                state=self.state,
                prompt=self._name_prompt(),
                messages=messages,
                outcome=outcome,
            )

        return self._finish(outcome, messages)

    def _finish(self, outcome: Optional[FaceOutcome], messages: List[str],
                cancelled: bool = False) -> EnrollmentUpdate:
        summary = self._summary
        summary.cancelled = cancelled

        # One save per session, and none if nothing was enrolled.
        if summary.enrolled > 0:
            summary.saved = self.gallery.save()
            if not summary.saved:
                messages.append("Enrolled faces are kept in memory but could not be saved")
        summary.after_count = len(self.gallery)

        if summary.enrolled > 0:
            messages.append(
                f"Successfully enrolled: {summary.enrolled}/{summary.total_faces} faces "
                f"(total {summary.before_count} -> {summary.after_count})"
            )
        elif summary.mode == EnrollmentMode.MULTI:
            messages.append("No faces were enrolled")

        logger.info(
            f"Enrollment session complete: {summary.enrolled} enrolled, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        self._reset()
        return EnrollmentUpdate(state=self.state, messages=messages, outcome=outcome, summary=summary)

    def _cancel(self) -> EnrollmentUpdate:
        if self.state in (EnrollmentState.AWAITING_NAME, EnrollmentState.AWAITING_CONFIRMATION):
            for index in range(self._index, len(self._faces)):
                self._summary.outcomes.append(
                    FaceOutcome(index + 1, FaceStatus.SKIPPED, reason="session cancelled")
                )
            return self._finish(None, ["Enrollment cancelled"], cancelled=True)

        was_active = self.is_active
        self._reset()
        return EnrollmentUpdate(state=self.state,
                                messages=["Enrollment cancelled"] if was_active else [])
