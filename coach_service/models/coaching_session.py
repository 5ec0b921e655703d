"""
POSECOACH Coach Service - Coaching Session

Phase state machine that walks a person through the pose sequence:
description -> demonstration image -> live correction -> next pose, with a
hold timer that must run uninterrupted before a pose counts as done.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from core.config import settings

from .exercise_config import ExerciseConfiguration, PoseData, load_exercise_config_file, ConfigurationError
from .landmarks import POSE_LANDMARK_INDEX, LandmarkFrame
from .pose_evaluator import AngleDetail, evaluate_pose

logger = logging.getLogger(__name__)


class CoachingPhase(str, Enum):
    """Session phases."""
    IDLE = "IDLE"
    LOADING_CONFIG = "LOADING_CONFIG"
    CONFIG_ERROR = "CONFIG_ERROR"
    INITIALIZING_POSE = "INITIALIZING_POSE"
    POSE_INIT_ERROR = "POSE_INIT_ERROR"
    DESCRIPTION = "DESCRIPTION"
    IMAGE = "IMAGE"
    CORRECTION = "CORRECTION"
    COMPLETED = "COMPLETED"
    CAMERA_ERROR = "CAMERA_ERROR"


# Host-driven phases; the session never leaves these on its own
LIFECYCLE_PHASES = frozenset({
    CoachingPhase.LOADING_CONFIG,
    CoachingPhase.CONFIG_ERROR,
    CoachingPhase.INITIALIZING_POSE,
    CoachingPhase.POSE_INIT_ERROR,
    CoachingPhase.CAMERA_ERROR,
})

ERROR_PHASES = frozenset({
    CoachingPhase.CONFIG_ERROR,
    CoachingPhase.POSE_INIT_ERROR,
    CoachingPhase.CAMERA_ERROR,
})

HARD_FAILURE_PHASES = frozenset({
    CoachingPhase.POSE_INIT_ERROR,
    CoachingPhase.CAMERA_ERROR,
})

FORCEABLE_PHASES = LIFECYCLE_PHASES | {CoachingPhase.IDLE}


class EngineStatus(str, Enum):
    """Outcome of camera / pose detector initialization reported by the host."""
    READY = "ready"
    CAMERA_FAULT = "camera_fault"
    ENGINE_FAULT = "engine_fault"


MAX_FEEDBACK_MESSAGES = 2
NO_BODY_FEEDBACK = "Cannot see you clearly. Adjust your position."
DEFAULT_DESCRIPTION = "Get ready for the next pose."
COMPLETED_DISPLAY_NAME = "Workout Complete!"
POSE_DONE_ANNOUNCEMENT = "Great!"
WORKOUT_DONE_ANNOUNCEMENT = "Workout completed! Well done."


# ═══════════════════════════════════════════════════════════════════════════════
# COLLABORATORS
# ═══════════════════════════════════════════════════════════════════════════════

class Announcer(Protocol):
    def speak(self, text: str) -> None: ...

    def stop_all(self) -> None: ...


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class PhaseScheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class AsyncioPhaseScheduler:
    """Runs phase timers on an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


# ═══════════════════════════════════════════════════════════════════════════════
# STATE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SessionState:
    phase: CoachingPhase = CoachingPhase.LOADING_CONFIG
    pose_index: int = -1  # -1 = before the first pose
    hold_start_time: Optional[float] = None
    hold_progress: float = 0.0


@dataclass
class SessionSnapshot:
    """What the host needs to render one tick."""
    session_id: str
    phase: CoachingPhase
    pose_index: int
    pose_name: Optional[str] = None
    pose_display_name: str = ""
    pose_description: Optional[str] = None
    pose_image_path: Optional[str] = None
    angle_details: List[AngleDetail] = field(default_factory=list)
    feedback_messages: List[str] = field(default_factory=list)
    hold_progress: float = 0.0
    config_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "pose_index": self.pose_index,
            "pose_name": self.pose_name,
            "pose_display_name": self.pose_display_name,
            "pose_description": self.pose_description,
            "pose_image_path": self.pose_image_path,
            "angle_details": [d.to_dict() for d in self.angle_details],
            "feedback_messages": list(self.feedback_messages),
            "hold_progress": round(self.hold_progress, 3),
            "config_error": self.config_error,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════════

class CoachingSession:
    """
    Drives one person through the configured pose sequence.

    Two event sources mutate the state: frames (process_frame) and phase
    timers fired by the scheduler. Both go through the same re-entrant lock,
    and every timer carries a token so a timer from a superseded phase does
    nothing when it fires.
    """

    def __init__(
        self,
        configuration: Optional[ExerciseConfiguration],
        announcer: Announcer,
        scheduler: Optional[PhaseScheduler] = None,
        *,
        session_id: Optional[str] = None,
        landmark_index: Optional[Mapping[str, int]] = None,
        clock: Callable[[], float] = time.monotonic,
        description_seconds: Optional[float] = None,
        image_seconds: Optional[float] = None,
        hold_seconds: Optional[float] = None,
        tolerance: Optional[float] = None,
        visibility_threshold: Optional[float] = None,
        on_change: Optional[Callable[[SessionSnapshot], None]] = None,
        on_fault: Optional[Callable[[EngineStatus], None]] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.announcer = announcer
        self.scheduler = scheduler or AsyncioPhaseScheduler()
        self.landmark_index = landmark_index or POSE_LANDMARK_INDEX
        self.clock = clock

        self.description_seconds = settings.DESCRIPTION_DISPLAY_SECONDS if description_seconds is None else description_seconds
        self.image_seconds = settings.IMAGE_DISPLAY_SECONDS if image_seconds is None else image_seconds
        self.hold_seconds = settings.POSE_HOLD_SECONDS if hold_seconds is None else hold_seconds
        self.tolerance = settings.EASY_MODE_TOLERANCE if tolerance is None else tolerance
        self.visibility_threshold = settings.VISIBILITY_THRESHOLD if visibility_threshold is None else visibility_threshold

        self.on_change = on_change
        self.on_fault = on_fault

        self._lock = threading.RLock()
        self._configuration = configuration
        self._config_error: Optional[str] = None
        self._engine_status: Optional[EngineStatus] = None

        self._pending_timer: Optional[ScheduledCall] = None
        self._timer_token = 0

        self._pose_name: Optional[str] = None
        self._pose: Optional[PoseData] = None
        self._display_name = ""
        self._angle_details: List[AngleDetail] = []
        self._feedback: List[str] = []

        initial = CoachingPhase.LOADING_CONFIG if configuration is None else CoachingPhase.INITIALIZING_POSE
        self.state = SessionState(phase=initial)

    # ─── Properties ──────────────────────────────────────────────────────────

    @property
    def phase(self) -> CoachingPhase:
        return self.state.phase

    @property
    def configuration(self) -> Optional[ExerciseConfiguration]:
        return self._configuration

    @property
    def engine_ready(self) -> bool:
        return self._engine_status == EngineStatus.READY

    @property
    def has_pending_timer(self) -> bool:
        return self._pending_timer is not None

    # ─── Host lifecycle ──────────────────────────────────────────────────────

    def set_configuration(self, configuration: Optional[ExerciseConfiguration]):
        """Replace the configuration; progress restarts before the first pose."""
        with self._lock:
            self._cancel_phase_timer()
            self._clear_working_state()
            self._configuration = configuration
            self._config_error = None

            if configuration is None:
                self._enter_phase(CoachingPhase.LOADING_CONFIG)
            elif self.state.phase in HARD_FAILURE_PHASES:
                logger.info(f"[{self.session_id}] Configuration replaced while in {self.state.phase.value}")
            else:
                self._enter_phase(self._ready_phase())

    def configuration_failed(self, message: str):
        """Record a configuration load failure and stop the workout."""
        with self._lock:
            self._configuration = None
            self._config_error = message
            self._clear_working_state()
            self.set_phase(CoachingPhase.CONFIG_ERROR)

    def apply_engine_status(self, status: EngineStatus):
        """Apply the outcome of camera / pose detector initialization."""
        status = EngineStatus(status)
        with self._lock:
            if status == EngineStatus.READY:
                self._engine_status = EngineStatus.READY
                logger.info(f"[{self.session_id}] Pose engine ready")
                if self.state.phase == CoachingPhase.INITIALIZING_POSE and self._configuration is not None:
                    self._enter_phase(CoachingPhase.IDLE)
            elif status == EngineStatus.ENGINE_FAULT:
                self._engine_status = EngineStatus.ENGINE_FAULT
                self.set_phase(CoachingPhase.POSE_INIT_ERROR)
            else:
                self.set_phase(CoachingPhase.CAMERA_ERROR)

    def set_phase(self, phase: CoachingPhase):
        """
        Force a lifecycle phase, or IDLE. Error phases silence any pending speech.

        Workout phases (DESCRIPTION, IMAGE, CORRECTION, COMPLETED) are only
        reached through start() and the hold logic.

        Raises:
            ValueError: for a workout phase
        """
        phase = CoachingPhase(phase)
        if phase not in FORCEABLE_PHASES:
            raise ValueError(f"Cannot force workout phase {phase.value}")

        with self._lock:
            self._cancel_phase_timer()
            self._reset_hold()
            if phase == CoachingPhase.IDLE:
                self._clear_working_state()
            if phase in ERROR_PHASES:
                self.announcer.stop_all()
            self._enter_phase(phase)

            if phase in HARD_FAILURE_PHASES:
                logger.error(f"[{self.session_id}] Hard failure: {phase.value}")
                self._notify_fault(
                    EngineStatus.CAMERA_FAULT if phase == CoachingPhase.CAMERA_ERROR else EngineStatus.ENGINE_FAULT
                )

    # ─── Workout control ─────────────────────────────────────────────────────

    def start(self) -> bool:
        """
        Start the workout from IDLE.

        Returns False (state unchanged, warning logged) when the pose engine is
        not ready or the session is not idle. A missing configuration forces
        CONFIG_ERROR.
        """
        with self._lock:
            if self._configuration is None:
                logger.warning(f"[{self.session_id}] Cannot start: no exercise configuration loaded")
                if self.state.phase != CoachingPhase.CONFIG_ERROR:
                    self.set_phase(CoachingPhase.CONFIG_ERROR)
                return False

            if not self.engine_ready:
                logger.warning(
                    f"[{self.session_id}] Pose engine not ready, cannot start "
                    f"(phase: {self.state.phase.value})"
                )
                if self._engine_status == EngineStatus.ENGINE_FAULT:
                    self._notify_fault(EngineStatus.ENGINE_FAULT)
                return False

            if self.state.phase != CoachingPhase.IDLE:
                logger.warning(f"[{self.session_id}] Cannot start workout from {self.state.phase.value}")
                return False

            self._advance()
            return True

    def reset(self):
        """Back to before the first pose, in the lifecycle-appropriate waiting phase."""
        with self._lock:
            self._cancel_phase_timer()
            self.announcer.stop_all()
            self._clear_working_state()

            target = self._waiting_phase()
            if self.state.phase != target:
                self._enter_phase(target)
            logger.info(f"[{self.session_id}] Session reset ({target.value})")

    def process_frame(
        self,
        landmarks: Optional[LandmarkFrame],
        frame_width: Optional[float] = None,
        frame_height: Optional[float] = None,
    ) -> SessionSnapshot:
        """
        Evaluate one frame of landmarks during CORRECTION.

        Frames outside CORRECTION only clear the hold timer.
        """
        if frame_width is None:
            frame_width = settings.DEFAULT_FRAME_WIDTH
        if frame_height is None:
            frame_height = settings.DEFAULT_FRAME_HEIGHT

        with self._lock:
            if self.state.phase != CoachingPhase.CORRECTION or self._pose is None or self._configuration is None:
                self._reset_hold()
                return self.snapshot()

            if not landmarks:
                self._feedback = [NO_BODY_FEEDBACK]
                self._angle_details = []
                self._reset_hold()
                return self.snapshot()

            evaluation = evaluate_pose(
                landmarks,
                self._pose.criteria,
                self._configuration.joint_definitions,
                frame_width,
                frame_height,
                tolerance=self.tolerance,
                landmark_index=self.landmark_index,
                visibility_threshold=self.visibility_threshold,
            )
            self._angle_details = evaluation.angle_details
            self._feedback = evaluation.feedback[:MAX_FEEDBACK_MESSAGES]

            if not evaluation.all_correct:
                self._reset_hold()
                return self.snapshot()

            now = self.clock()
            if self.state.hold_start_time is None:
                self.state.hold_start_time = now
                self.state.hold_progress = 0.0
                logger.debug(f"[{self.session_id}] Hold started for {self._pose_name}")
                return self.snapshot()

            elapsed = now - self.state.hold_start_time
            if self.hold_seconds > 0:
                self.state.hold_progress = min(elapsed / self.hold_seconds, 1.0)
            else:
                self.state.hold_progress = 1.0

            if elapsed >= self.hold_seconds:
                logger.info(f"[{self.session_id}] ✅ Pose held: {self._pose_name} ({elapsed:.1f}s)")
                self.announcer.speak(POSE_DONE_ANNOUNCEMENT)
                self._reset_hold()
                self._advance()

            return self.snapshot()

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            pose = self._pose
            return SessionSnapshot(
                session_id=self.session_id,
                phase=self.state.phase,
                pose_index=self.state.pose_index,
                pose_name=self._pose_name,
                pose_display_name=self._display_name,
                pose_description=pose.description if pose else None,
                pose_image_path=pose.image_path if pose else None,
                angle_details=list(self._angle_details),
                feedback_messages=list(self._feedback),
                hold_progress=self.state.hold_progress,
                config_error=self._config_error,
            )

    def close(self):
        """Cancel timers; used when the host tears the session down."""
        with self._lock:
            self._cancel_phase_timer()

    # ─── Transitions ─────────────────────────────────────────────────────────

    def _advance(self):
        """Move to the next pose in the sequence, or finish the workout."""
        self._cancel_phase_timer()
        self._angle_details = []
        self._feedback = []
        self._reset_hold()

        config = self._configuration
        next_index = self.state.pose_index + 1
        if next_index >= len(config.sequence):
            self.state.pose_index = len(config.sequence)
            self._pose_name = None
            self._pose = None
            self._display_name = COMPLETED_DISPLAY_NAME
            self._enter_phase(CoachingPhase.COMPLETED)
            self.announcer.speak(WORKOUT_DONE_ANNOUNCEMENT)
            return

        pose_name = config.sequence[next_index]
        self.state.pose_index = next_index
        self._pose_name = pose_name
        self._pose = config.poses[pose_name]
        self._display_name = config.display_name_for(pose_name)

        self._enter_phase(CoachingPhase.DESCRIPTION)
        description = self._pose.description or DEFAULT_DESCRIPTION
        self.announcer.speak(f"Next: {self._display_name}. {description}")
        self._schedule_phase_timer(self.description_seconds, CoachingPhase.DESCRIPTION, self._show_image)

    def _show_image(self):
        self._enter_phase(CoachingPhase.IMAGE)
        self._schedule_phase_timer(self.image_seconds, CoachingPhase.IMAGE, self._begin_correction)

    def _begin_correction(self):
        self._reset_hold()
        self._enter_phase(CoachingPhase.CORRECTION)
        self.announcer.speak(f"Hold {self._display_name}.")

    def _enter_phase(self, phase: CoachingPhase):
        previous = self.state.phase
        self.state.phase = phase
        if previous != phase:
            logger.info(f"[{self.session_id}] Phase {previous.value} → {phase.value}")
        if self.on_change:
            try:
                self.on_change(self.snapshot())
            except Exception as e:
                logger.error(f"[{self.session_id}] on_change listener failed: {e}")

    def _waiting_phase(self) -> CoachingPhase:
        if self._configuration is None:
            if self.state.phase == CoachingPhase.CONFIG_ERROR:
                return CoachingPhase.CONFIG_ERROR
            return CoachingPhase.LOADING_CONFIG
        if self._engine_status == EngineStatus.ENGINE_FAULT:
            return CoachingPhase.POSE_INIT_ERROR
        return self._ready_phase()

    def _ready_phase(self) -> CoachingPhase:
        return CoachingPhase.IDLE if self.engine_ready else CoachingPhase.INITIALIZING_POSE

    # ─── Timers ──────────────────────────────────────────────────────────────

    def _schedule_phase_timer(self, delay: float, expected_phase: CoachingPhase, action: Callable[[], None]):
        self._cancel_phase_timer()
        token = self._timer_token

        def fire():
            self._on_phase_timer(token, expected_phase, action)

        self._pending_timer = self.scheduler.call_later(delay, fire)

    def _on_phase_timer(self, token: int, expected_phase: CoachingPhase, action: Callable[[], None]):
        with self._lock:
            if token != self._timer_token or self.state.phase != expected_phase:
                logger.debug(
                    f"[{self.session_id}] Ignoring stale {expected_phase.value} timer "
                    f"(now {self.state.phase.value})"
                )
                return
            self._pending_timer = None
            action()

    def _cancel_phase_timer(self):
        # Bumping the token also invalidates a callback the scheduler already queued
        self._timer_token += 1
        if self._pending_timer is not None:
            self._pending_timer.cancel()
            self._pending_timer = None

    # ─── Helpers ─────────────────────────────────────────────────────────────

    def _reset_hold(self):
        self.state.hold_start_time = None
        self.state.hold_progress = 0.0

    def _clear_working_state(self):
        self.state.pose_index = -1
        self._pose_name = None
        self._pose = None
        self._display_name = ""
        self._angle_details = []
        self._feedback = []
        self._reset_hold()

    def _notify_fault(self, status: EngineStatus):
        if self.on_fault:
            try:
                self.on_fault(status)
            except Exception as e:
                logger.error(f"[{self.session_id}] on_fault listener failed: {e}")


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class CoachingSessionManager:
    """
    Holds the loaded exercise configuration and the active sessions.
    """

    def __init__(
        self,
        configuration: Optional[ExerciseConfiguration] = None,
        *,
        landmark_index: Optional[Mapping[str, int]] = None,
        description_seconds: Optional[float] = None,
        image_seconds: Optional[float] = None,
        hold_seconds: Optional[float] = None,
        tolerance: Optional[float] = None,
    ):
        self.configuration = configuration
        self.configuration_error: Optional[str] = None
        self.landmark_index = landmark_index or POSE_LANDMARK_INDEX
        self.session_options = {
            "description_seconds": description_seconds,
            "image_seconds": image_seconds,
            "hold_seconds": hold_seconds,
            "tolerance": tolerance,
        }
        self.active_sessions: Dict[str, CoachingSession] = {}

    def load_configuration_file(self, path: str) -> bool:
        """
        Load the exercise configuration from disk.

        Returns True on success. On failure the error is kept and pushed to
        every active session.
        """
        try:
            config = load_exercise_config_file(path, self.landmark_index)
        except ConfigurationError as e:
            logger.error(f"❌ {e}")
            self.set_configuration_error(str(e))
            return False

        self.set_configuration(config)
        return True

    def set_configuration(self, configuration: ExerciseConfiguration):
        self.configuration = configuration
        self.configuration_error = None
        for session in self.active_sessions.values():
            session.set_configuration(configuration)

    def set_configuration_error(self, message: str):
        self.configuration = None
        self.configuration_error = message
        for session in self.active_sessions.values():
            session.configuration_failed(message)

    def create_session(
        self,
        announcer: Announcer,
        scheduler: Optional[PhaseScheduler] = None,
        on_change: Optional[Callable[[SessionSnapshot], None]] = None,
        on_fault: Optional[Callable[[EngineStatus], None]] = None,
    ) -> CoachingSession:
        session = CoachingSession(
            self.configuration,
            announcer,
            scheduler,
            landmark_index=self.landmark_index,
            on_change=on_change,
            on_fault=on_fault,
            **self.session_options,
        )
        if self.configuration_error:
            session.configuration_failed(self.configuration_error)

        self.active_sessions[session.session_id] = session
        logger.info(f"🧘 Session created: {session.session_id} ({session.phase.value})")
        return session

    def get_session(self, session_id: str) -> Optional[CoachingSession]:
        return self.active_sessions.get(session_id)

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [
            {"session_id": sid, "phase": session.phase.value, "pose_index": session.state.pose_index}
            for sid, session in self.active_sessions.items()
        ]

    def cleanup_session(self, session_id: str):
        session = self.active_sessions.pop(session_id, None)
        if session:
            session.close()
            logger.info(f"👋 Session closed: {session_id}")

    def get_stats(self) -> dict:
        return {
            "active_sessions": len(self.active_sessions),
            "configuration_loaded": self.configuration is not None,
            "configuration_error": self.configuration_error,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_manager_instance: Optional[CoachingSessionManager] = None

def get_session_manager() -> CoachingSessionManager:
    """Get or create the global session manager instance."""
    global _manager_instance
    if _manager_instance is None:
        _manager_instance = CoachingSessionManager()
    return _manager_instance
