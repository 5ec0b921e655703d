"""
POSECOACH Coach Service Models

Rule-based pose checking and the guided workout state machine.
"""

from .landmarks import (
    PoseLandmark,
    POSE_LANDMARK_INDEX,
    LandmarkPoint,
    LandmarkFrame,
    resolve_landmark,
    frame_from_dicts,
)

from .exercise_config import (
    ConfigurationError,
    ExerciseConfiguration,
    JointCriterion,
    JointDefinition,
    PoseData,
    load_exercise_config,
    load_exercise_config_file,
)

from .pose_evaluator import (
    AngleDetail,
    PoseEvaluation,
    calculate_angle,
    evaluate_pose,
    COLOR_CORRECT,
    COLOR_INCORRECT,
)

from .announcer import (
    AnnouncementQueue,
    AnnouncementSink,
)

from .coaching_session import (
    CoachingPhase,
    CoachingSession,
    CoachingSessionManager,
    EngineStatus,
    SessionState,
    SessionSnapshot,
    AsyncioPhaseScheduler,
    get_session_manager,
)

__all__ = [
    # Landmarks
    "PoseLandmark",
    "POSE_LANDMARK_INDEX",
    "LandmarkPoint",
    "LandmarkFrame",
    "resolve_landmark",
    "frame_from_dicts",
    # Configuration
    "ConfigurationError",
    "ExerciseConfiguration",
    "JointCriterion",
    "JointDefinition",
    "PoseData",
    "load_exercise_config",
    "load_exercise_config_file",
    # Evaluator
    "AngleDetail",
    "PoseEvaluation",
    "calculate_angle",
    "evaluate_pose",
    "COLOR_CORRECT",
    "COLOR_INCORRECT",
    # Announcements
    "AnnouncementQueue",
    "AnnouncementSink",
    # Session
    "CoachingPhase",
    "CoachingSession",
    "CoachingSessionManager",
    "EngineStatus",
    "SessionState",
    "SessionSnapshot",
    "AsyncioPhaseScheduler",
    "get_session_manager",
]
