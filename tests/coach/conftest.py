"""
Shared fixtures for coach service tests: a small exercise configuration,
landmark frame builders, and fake clock / scheduler / announcer doubles.
"""

import math
from pathlib import Path

import pytest

from coach_service.models import (
    LandmarkPoint,
    PoseLandmark,
    load_exercise_config,
)


REPO_ROOT = Path(__file__).resolve().parents[2]

JOINT_LANDMARKS = {
    "left_elbow": ("LEFT_SHOULDER", "LEFT_ELBOW", "LEFT_WRIST"),
    "right_elbow": ("RIGHT_SHOULDER", "RIGHT_ELBOW", "RIGHT_WRIST"),
    "right_knee": ("RIGHT_HIP", "RIGHT_KNEE", "RIGHT_ANKLE"),
}


def criterion(low, high, below="too low", above="too high"):
    return {"angle_range": [low, high], "feedback": {"below_min": below, "above_max": above}}


def config_document():
    return {
        "joint_definitions": {
            name: {"landmarks": {"A": a, "B": b, "C": c}}
            for name, (a, b, c) in JOINT_LANDMARKS.items()
        },
        "poses": {
            "arms_straight": {
                "display_name": "Straight Arms",
                "description": "Hold both arms straight.",
                "image_path": "images/arms.png",
                "criteria": {
                    "left_elbow": criterion(160, 180, "Straighten your left arm.", "Relax your left arm."),
                    "right_elbow": criterion(160, 180, "Straighten your right arm.", "Relax your right arm."),
                    "right_knee": criterion(160, 180, "Straighten your right leg.", "Relax your right leg."),
                },
            },
            "knee_bend": {
                "criteria": {
                    "right_knee": criterion(80, 100, "Stand up a little.", "Bend your knee more."),
                },
            },
        },
        "sequence": ["arms_straight", "knee_bend"],
    }


@pytest.fixture
def document():
    return config_document()


@pytest.fixture
def config():
    return load_exercise_config(config_document())


def joint_points(angle_deg, vertex=(0.5, 0.5), length=0.1):
    """A, B, C points whose included angle at B is angle_deg."""
    bx, by = vertex
    theta = math.radians(angle_deg)
    a = (bx + length, by)
    c = (bx + length * math.cos(theta), by + length * math.sin(theta))
    return a, vertex, c


def build_frame(angles, visibility=0.9):
    """
    33-point frame where each named joint has the requested angle.

    angles: joint name -> angle in degrees
    """
    frame = [LandmarkPoint(x=0.5, y=0.5, z=0.0, visibility=visibility) for _ in PoseLandmark]
    for joint_name, angle in angles.items():
        names = JOINT_LANDMARKS[joint_name]
        for name, (x, y) in zip(names, joint_points(angle)):
            frame[PoseLandmark[name]] = LandmarkPoint(x=x, y=y, z=0.0, visibility=visibility)
    return frame


@pytest.fixture
def make_frame():
    return build_frame


# ═══════════════════════════════════════════════════════════════════════════════
# DOUBLES
# ═══════════════════════════════════════════════════════════════════════════════

class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Collects phase timers; tests fire them explicitly."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and h.callback is not None]

    def fire_next(self):
        handle = self.pending[0]
        callback, handle.callback = handle.callback, None
        callback()
        return handle


class FakeAnnouncer:
    def __init__(self):
        self.spoken = []
        self.stop_count = 0

    def speak(self, text):
        self.spoken.append(text)

    def stop_all(self):
        self.stop_count += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def announcer():
    return FakeAnnouncer()
