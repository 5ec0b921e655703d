"""
POSECOACH Coach Service - Landmark Numbering

The 33-point body landmark numbering produced by the pose detector, and the
per-frame landmark point type. The name -> index map is passed explicitly to
the evaluator instead of being looked up from the detector at runtime.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional, Sequence


class PoseLandmark(IntEnum):
    """Body landmark indices in detector output order."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Default name -> index map handed to the evaluator
POSE_LANDMARK_INDEX: Dict[str, int] = {lm.name: lm.value for lm in PoseLandmark}


def resolve_landmark(name: str, landmark_index: Mapping[str, int]) -> Optional[int]:
    """Look up a landmark name (case-insensitive). Returns None if unknown."""
    return landmark_index.get(name.upper())


@dataclass
class LandmarkPoint:
    """A normalized (0..1) body point for one frame."""
    x: float
    y: float
    z: Optional[float] = None
    visibility: Optional[float] = None
    presence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LandmarkPoint":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=_optional_float(data.get("z")),
            visibility=_optional_float(data.get("visibility")),
            presence=_optional_float(data.get("presence")),
        )


# A frame is an ordered list of points; None means no body detected
LandmarkFrame = Sequence[Optional[LandmarkPoint]]


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _point_or_none(item: Any) -> Optional[LandmarkPoint]:
    # Entries without usable x/y count as points the detector did not find
    if item is None:
        return None
    try:
        return LandmarkPoint.from_dict(item)
    except (KeyError, TypeError, ValueError):
        return None


def frame_from_dicts(raw: Optional[Sequence[Optional[Mapping[str, Any]]]]) -> Optional[list]:
    """Convert a JSON landmark list into LandmarkPoints, keeping gaps as None."""
    if raw is None:
        return None
    return [_point_or_none(item) for item in raw]
