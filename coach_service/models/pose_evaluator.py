"""
POSECOACH Coach Service - Pose Evaluator

Joint angle calculation and per-joint checking of a landmark frame against a
pose's criteria. Stateless; safe to share across frames and sessions.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.config import settings

from .exercise_config import JointCriterion, JointDefinition
from .landmarks import POSE_LANDMARK_INDEX, LandmarkFrame, LandmarkPoint, resolve_landmark


COLOR_CORRECT = "#00FF00"
COLOR_INCORRECT = "#FF0000"

# Angle reported when a joint could not be measured
UNDETERMINED_ANGLE = -1.0


@dataclass
class DrawPoint:
    """Pixel-space point for overlay drawing."""
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass
class AngleDetail:
    """Per-joint result for a single frame."""
    name: str
    angle: float
    is_correct: bool
    feedback: str
    p1: DrawPoint = field(default_factory=DrawPoint)
    p2: DrawPoint = field(default_factory=DrawPoint)
    p3: DrawPoint = field(default_factory=DrawPoint)
    color: str = COLOR_INCORRECT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "angle": round(self.angle, 1),
            "is_correct": self.is_correct,
            "feedback": self.feedback,
            "p1": self.p1.to_dict(),
            "p2": self.p2.to_dict(),
            "p3": self.p3.to_dict(),
            "color": self.color,
        }


@dataclass
class PoseEvaluation:
    angle_details: List[AngleDetail]
    all_correct: bool

    @property
    def feedback(self) -> List[str]:
        """Feedback of incorrect joints in evaluation order."""
        return [d.feedback for d in self.angle_details if not d.is_correct and d.feedback]


# ═══════════════════════════════════════════════════════════════════════════════
# GEOMETRY
# ═══════════════════════════════════════════════════════════════════════════════

def calculate_angle(p1: LandmarkPoint, p2: LandmarkPoint, p3: LandmarkPoint) -> float:
    """
    Calculate the angle at p2 formed by p1-p2-p3, using x/y only.

    Returns:
        Angle in degrees (0-180); 0 when either ray has zero length
    """
    ba = np.array([p1.x - p2.x, p1.y - p2.y], dtype=np.float64)
    bc = np.array([p3.x - p2.x, p3.y - p2.y], dtype=np.float64)

    norm_ba = np.linalg.norm(ba)
    norm_bc = np.linalg.norm(bc)
    if norm_ba == 0 or norm_bc == 0:
        return 0.0

    cosine_angle = np.dot(ba, bc) / (norm_ba * norm_bc)
    cosine_angle = np.clip(cosine_angle, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosine_angle)))


def _is_finite(point: LandmarkPoint) -> bool:
    return bool(np.isfinite([point.x, point.y]).all())


def _scaled(point: LandmarkPoint, frame_width: float, frame_height: float) -> DrawPoint:
    if not _is_finite(point):
        return DrawPoint()
    return DrawPoint(x=point.x * frame_width, y=point.y * frame_height)


def _landmark_at(frame: Optional[LandmarkFrame], index: int) -> Optional[LandmarkPoint]:
    if not frame or index >= len(frame):
        return None
    return frame[index]


def _is_visible(point: LandmarkPoint, threshold: float) -> bool:
    return point.visibility is not None and point.visibility > threshold and _is_finite(point)


# ═══════════════════════════════════════════════════════════════════════════════
# POSE CHECK
# ═══════════════════════════════════════════════════════════════════════════════

def evaluate_pose(
    frame: Optional[LandmarkFrame],
    criteria: Mapping[str, JointCriterion],
    joint_definitions: Mapping[str, JointDefinition],
    frame_width: float,
    frame_height: float,
    tolerance: Optional[float] = None,
    landmark_index: Optional[Mapping[str, int]] = None,
    visibility_threshold: Optional[float] = None,
) -> PoseEvaluation:
    """
    Check every joint named in the criteria against the frame.

    A joint that cannot be measured (bad definition, missing or poorly visible
    landmarks) is reported as incorrect with angle -1 and never stops the
    remaining joints from being checked.

    Args:
        frame: Normalized landmarks in detector order, or None
        criteria: joint name -> criterion, evaluated in insertion order
        joint_definitions: joint name -> three landmark names
        frame_width, frame_height: Display size for the draw points
        tolerance: Degrees added to both ends of each range
        landmark_index: Landmark name -> frame index
        visibility_threshold: Points at or below this visibility are unusable

    Returns:
        PoseEvaluation with one AngleDetail per criterion
    """
    if tolerance is None:
        tolerance = settings.EASY_MODE_TOLERANCE
    if landmark_index is None:
        landmark_index = POSE_LANDMARK_INDEX
    if visibility_threshold is None:
        visibility_threshold = settings.VISIBILITY_THRESHOLD

    angle_details: List[AngleDetail] = []
    all_correct = True

    for joint_name, criterion in criteria.items():
        label = joint_name.replace("_", " ")
        definition = joint_definitions.get(joint_name)
        indices: Tuple[Optional[int], ...] = ()
        if definition is not None:
            indices = tuple(resolve_landmark(n, landmark_index) for n in definition.landmarks.names())

        if definition is None or any(i is None for i in indices):
            all_correct = False
            angle_details.append(AngleDetail(
                name=joint_name,
                angle=UNDETERMINED_ANGLE,
                is_correct=False,
                feedback=f"Landmark definition error for {label}.",
            ))
            continue

        points = [_landmark_at(frame, i) for i in indices]
        if any(p is None for p in points):
            all_correct = False
            angle_details.append(AngleDetail(
                name=joint_name,
                angle=UNDETERMINED_ANGLE,
                is_correct=False,
                feedback=f"{label} points not found on body.",
            ))
            continue

        a, b, c = points
        color = COLOR_INCORRECT
        feedback = ""

        if not all(_is_visible(p, visibility_threshold) for p in points):
            angle = UNDETERMINED_ANGLE
            is_correct = False
            feedback = f"{label} not clearly visible."
        else:
            # Normalized coordinates; pixel scaling is only for drawing
            angle = calculate_angle(a, b, c)
            low = criterion.min_angle - tolerance
            high = criterion.max_angle + tolerance
            is_correct = low <= angle <= high
            if is_correct:
                color = COLOR_CORRECT
            elif angle < low:
                feedback = criterion.feedback.below_min
            else:
                feedback = criterion.feedback.above_max

        if not is_correct:
            all_correct = False

        angle_details.append(AngleDetail(
            name=joint_name,
            angle=angle,
            is_correct=is_correct,
            feedback=feedback,
            p1=_scaled(a, frame_width, frame_height),
            p2=_scaled(b, frame_width, frame_height),
            p3=_scaled(c, frame_width, frame_height),
            color=color,
        ))

    return PoseEvaluation(angle_details=angle_details, all_correct=all_correct)
