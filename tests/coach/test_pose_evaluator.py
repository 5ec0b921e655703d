"""
Pose evaluator tests: joint angle geometry and per-joint checking.
"""

import math

import pytest

from coach_service.models import (
    COLOR_CORRECT,
    COLOR_INCORRECT,
    POSE_LANDMARK_INDEX,
    LandmarkPoint,
    PoseLandmark,
    calculate_angle,
    frame_from_dicts,
    evaluate_pose,
    load_exercise_config,
)

from conftest import build_frame, config_document, criterion


def p(x, y, z=None):
    return LandmarkPoint(x=x, y=y, z=z, visibility=1.0)


# ═══════════════════════════════════════════════════════════════════════════════
# GEOMETRY
# ═══════════════════════════════════════════════════════════════════════════════

def test_right_angle():
    assert calculate_angle(p(1, 0), p(0, 0), p(0, 1)) == pytest.approx(90.0)


def test_colinear_points_give_straight_angle():
    assert calculate_angle(p(0.1, 0.5), p(0.5, 0.5), p(0.9, 0.5)) == 180.0


def test_angle_is_symmetric():
    a, b, c = p(0.2, 0.3), p(0.5, 0.5), p(0.7, 0.1)
    assert calculate_angle(a, b, c) == pytest.approx(calculate_angle(c, b, a))


def test_zero_length_ray_returns_zero():
    assert calculate_angle(p(0.5, 0.5), p(0.5, 0.5), p(0.9, 0.1)) == 0.0
    assert calculate_angle(p(0.1, 0.1), p(0.5, 0.5), p(0.5, 0.5)) == 0.0


def test_depth_is_ignored():
    flat = calculate_angle(p(1, 0, 0.0), p(0, 0, 0.0), p(0, 1, 0.0))
    deep = calculate_angle(p(1, 0, 5.0), p(0, 0, -3.0), p(0, 1, 2.0))
    assert flat == pytest.approx(deep)


def test_nearly_colinear_points_never_nan():
    angle = calculate_angle(p(0.0, 0.0), p(1e-9, 1e-9), p(1.0, 1.0))
    assert 0.0 <= angle <= 180.0


# ═══════════════════════════════════════════════════════════════════════════════
# POSE CHECK
# ═══════════════════════════════════════════════════════════════════════════════

def evaluate(config, pose_name, frame, tolerance=20, **kwargs):
    return evaluate_pose(
        frame,
        config.poses[pose_name].criteria,
        config.joint_definitions,
        1280,
        720,
        tolerance=tolerance,
        **kwargs,
    )


def test_tolerance_widens_range(config):
    result = evaluate(config, "knee_bend", build_frame({"right_knee": 70}))
    assert result.all_correct
    detail = result.angle_details[0]
    assert detail.is_correct
    assert detail.feedback == ""
    assert detail.color == COLOR_CORRECT


def test_tolerance_boundary_for_straight_joint():
    doc = config_document()
    doc["poses"]["knee_bend"]["criteria"]["right_knee"] = criterion(160, 180, "Straighten", "Relax")
    config = load_exercise_config(doc)

    inside = evaluate(config, "knee_bend", build_frame({"right_knee": 145}))
    assert inside.all_correct

    outside = evaluate(config, "knee_bend", build_frame({"right_knee": 139.9}))
    assert not outside.all_correct
    assert outside.angle_details[0].feedback == "Straighten"
    assert outside.angle_details[0].color == COLOR_INCORRECT


def test_above_range_uses_above_max_feedback(config):
    result = evaluate(config, "knee_bend", build_frame({"right_knee": 150}), tolerance=0)
    detail = result.angle_details[0]
    assert not detail.is_correct
    assert detail.feedback == "Bend your knee more."
    assert detail.angle == pytest.approx(150.0)


@pytest.mark.parametrize("frame", [None, []])
def test_absent_frame_reports_every_joint_missing(config, frame):
    result = evaluate(config, "arms_straight", frame)
    assert not result.all_correct
    assert len(result.angle_details) == 3
    for detail in result.angle_details:
        assert detail.angle == -1
        assert not detail.is_correct
        assert "not found on body" in detail.feedback


def test_short_frame_reports_missing_points(config):
    frame = build_frame({"left_elbow": 170})[: PoseLandmark.LEFT_WRIST]
    result = evaluate(config, "arms_straight", frame)
    assert result.angle_details[0].feedback == "left elbow points not found on body."


def test_low_visibility_is_not_measured(config):
    frame = build_frame({"right_knee": 90})
    frame[PoseLandmark.RIGHT_ANKLE] = LandmarkPoint(x=0.6, y=0.5, visibility=0.3)
    result = evaluate(config, "knee_bend", frame)
    detail = result.angle_details[0]
    assert detail.angle == -1
    assert detail.feedback == "right knee not clearly visible."
    assert not result.all_correct
    # Still drawn, in pixel space
    assert detail.p3.x == pytest.approx(0.6 * 1280)
    assert detail.p3.y == pytest.approx(0.5 * 720)


def test_missing_visibility_counts_as_not_visible(config):
    frame = build_frame({"right_knee": 90})
    frame[PoseLandmark.RIGHT_HIP] = LandmarkPoint(x=0.6, y=0.5)
    result = evaluate(config, "knee_bend", frame)
    assert result.angle_details[0].feedback == "right knee not clearly visible."


def test_unresolved_landmark_does_not_stop_other_joints(config):
    index = dict(POSE_LANDMARK_INDEX)
    del index["LEFT_WRIST"]
    frame = build_frame({"left_elbow": 170, "right_elbow": 170, "right_knee": 170})

    result = evaluate(config, "arms_straight", frame, landmark_index=index)

    first, second, third = result.angle_details
    assert first.angle == -1
    assert first.feedback == "Landmark definition error for left elbow."
    assert second.is_correct
    assert third.is_correct
    assert not result.all_correct


def test_details_follow_criteria_order_and_scale_points(config):
    frame = build_frame({"left_elbow": 170, "right_elbow": 100, "right_knee": 100})
    result = evaluate(config, "arms_straight", frame)

    assert [d.name for d in result.angle_details] == ["left_elbow", "right_elbow", "right_knee"]
    assert result.feedback == ["Straighten your right arm.", "Straighten your right leg."]

    vertex = result.angle_details[0].p2
    assert vertex.x == pytest.approx(0.5 * 1280)
    assert vertex.y == pytest.approx(0.5 * 720)


def test_all_joints_correct(config):
    frame = build_frame({"left_elbow": 175, "right_elbow": 178, "right_knee": 165})
    result = evaluate(config, "arms_straight", frame, tolerance=0)
    assert result.all_correct
    assert result.feedback == []


# ═══════════════════════════════════════════════════════════════════════════════
# MALFORMED INPUT
# ═══════════════════════════════════════════════════════════════════════════════

def as_dicts(frame):
    return [{"x": p.x, "y": p.y, "z": p.z, "visibility": p.visibility} for p in frame]


def test_entries_without_coordinates_become_gaps():
    raw = as_dicts(build_frame({"right_knee": 90}))
    raw[PoseLandmark.NOSE] = {"visibility": 0.1}
    raw[PoseLandmark.LEFT_SHOULDER] = {"x": "left", "y": 0.2}
    raw[PoseLandmark.RIGHT_HIP] = "hip"

    frame = frame_from_dicts(raw)

    assert len(frame) == 33
    assert frame[PoseLandmark.NOSE] is None
    assert frame[PoseLandmark.LEFT_SHOULDER] is None
    assert frame[PoseLandmark.RIGHT_HIP] is None
    assert frame[PoseLandmark.RIGHT_KNEE].visibility == pytest.approx(0.9)


def test_malformed_landmark_only_affects_its_joints(config):
    raw = as_dicts(build_frame({"left_elbow": 170, "right_elbow": 170, "right_knee": 170}))
    raw[PoseLandmark.NOSE] = {"visibility": 0.1}
    raw[PoseLandmark.LEFT_WRIST] = {"y": 0.4}

    result = evaluate(config, "arms_straight", frame_from_dicts(raw))

    first, second, third = result.angle_details
    assert first.feedback == "left elbow points not found on body."
    assert second.is_correct
    assert third.is_correct


def test_non_finite_coordinates_are_not_measured(config):
    frame = build_frame({"right_knee": 90})
    frame[PoseLandmark.RIGHT_KNEE] = LandmarkPoint(x=float("nan"), y=0.5, visibility=0.9)

    result = evaluate(config, "knee_bend", frame)

    detail = result.angle_details[0]
    assert detail.angle == -1
    assert detail.feedback == "right knee not clearly visible."
    assert not result.all_correct
    assert detail.p2.to_dict() == {"x": 0.0, "y": 0.0}
    assert all(math.isfinite(v) for v in detail.p1.to_dict().values())
