"""
POSECOACH Coach Service - Exercise Configuration

Joint definitions, poses with per-joint angle criteria, and the ordered pose
sequence. Validated once at load time and read-only afterwards.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .landmarks import resolve_landmark

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when an exercise configuration is missing or malformed."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []


# ═══════════════════════════════════════════════════════════════════════════════
# MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class JointLandmarks(BaseModel):
    """Three landmark names forming a joint; B is the vertex."""
    model_config = ConfigDict(frozen=True)

    A: str
    B: str
    C: str

    def names(self) -> Tuple[str, str, str]:
        return (self.A, self.B, self.C)


class JointDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    landmarks: JointLandmarks


class CriterionFeedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    below_min: str
    above_max: str


class JointCriterion(BaseModel):
    """Acceptable angle range (degrees) and feedback for one joint in one pose."""
    model_config = ConfigDict(frozen=True)

    angle_range: Tuple[float, float]
    feedback: CriterionFeedback

    @field_validator("angle_range")
    @classmethod
    def _check_range(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if not 0 <= low <= high <= 180:
            raise ValueError(f"angle_range must satisfy 0 <= min <= max <= 180, got [{low}, {high}]")
        return value

    @property
    def min_angle(self) -> float:
        return self.angle_range[0]

    @property
    def max_angle(self) -> float:
        return self.angle_range[1]


class PoseData(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: Optional[str] = None
    description: Optional[str] = None
    image_path: Optional[str] = None
    criteria: Dict[str, JointCriterion]


class ExerciseConfiguration(BaseModel):
    """
    Complete exercise configuration.

    Every sequence entry must name a pose and every pose criterion must name a
    defined joint. Criteria keep their document order, which is the order joints
    are evaluated and feedback is shown.
    """
    model_config = ConfigDict(frozen=True)

    joint_definitions: Dict[str, JointDefinition]
    poses: Dict[str, PoseData]
    sequence: List[str]

    @model_validator(mode="after")
    def _check_references(self) -> "ExerciseConfiguration":
        problems = self.reference_problems()
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def reference_problems(self) -> List[str]:
        problems: List[str] = []
        for position, pose_name in enumerate(self.sequence):
            if pose_name not in self.poses:
                problems.append(f"sequence[{position}] names unknown pose '{pose_name}'")
        for pose_name, pose in self.poses.items():
            for joint_name in pose.criteria:
                if joint_name not in self.joint_definitions:
                    problems.append(f"pose '{pose_name}' references undefined joint '{joint_name}'")
        return problems

    def landmark_problems(self, landmark_index: Mapping[str, int]) -> List[str]:
        """List joint landmark names that the given index cannot resolve."""
        problems = []
        for joint_name, definition in self.joint_definitions.items():
            for name in definition.landmarks.names():
                if resolve_landmark(name, landmark_index) is None:
                    problems.append(f"joint '{joint_name}' uses unknown landmark '{name}'")
        return problems

    # Sequence helpers

    def pose_name_at(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.sequence):
            return self.sequence[index]
        return None

    def pose_at(self, index: int) -> Optional[PoseData]:
        name = self.pose_name_at(index)
        return self.poses.get(name) if name is not None else None

    def display_name_for(self, pose_name: str) -> str:
        pose = self.poses.get(pose_name)
        if pose is not None and pose.display_name:
            return pose.display_name
        return pose_name.replace("_", " ")

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly overview of the workout."""
        return {
            "sequence": list(self.sequence),
            "poses": [
                {
                    "name": name,
                    "display_name": self.display_name_for(name),
                    "joints": list(self.poses[name].criteria),
                }
                for name in self.sequence
            ],
            "joint_count": len(self.joint_definitions),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════════

def _format_validation_error(error: ValidationError) -> List[str]:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        problems.append(f"{location}: {message}" if location else message)
    return problems


def load_exercise_config(
    data: Mapping[str, Any],
    landmark_index: Optional[Mapping[str, int]] = None,
) -> ExerciseConfiguration:
    """
    Validate a parsed configuration document.

    Args:
        data: Parsed JSON mapping
        landmark_index: If given, joint landmark names are checked against it

    Raises:
        ConfigurationError: on any shape or reference problem
    """
    if data is None:
        raise ConfigurationError("Exercise configuration is missing")

    try:
        config = ExerciseConfiguration.model_validate(data)
    except ValidationError as e:
        problems = _format_validation_error(e)
        raise ConfigurationError(f"Invalid exercise configuration: {'; '.join(problems)}", problems) from e

    if landmark_index is not None:
        problems = config.landmark_problems(landmark_index)
        if problems:
            raise ConfigurationError(f"Invalid exercise configuration: {'; '.join(problems)}", problems)

    logger.info(
        f"📋 Exercise configuration loaded "
        f"({len(config.sequence)} poses in sequence, {len(config.joint_definitions)} joints)"
    )
    return config


def load_exercise_config_file(
    path: Union[str, Path],
    landmark_index: Optional[Mapping[str, int]] = None,
) -> ExerciseConfiguration:
    """Read a JSON configuration file and validate it."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Exercise configuration not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Exercise configuration is not valid JSON: {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Exercise configuration is not UTF-8 text: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"Exercise configuration could not be read: {path}: {e}") from e

    return load_exercise_config(data, landmark_index)
