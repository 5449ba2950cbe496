"""
Tests for task configuration, set-points and calibration.
Run with: pytest tests/ -v
"""

import copy
import logging

import numpy as np
import pytest

from biomechanical_analysis.errors import ConfigurationError
from biomechanical_analysis.ik import (
    QPInverseKinematics,
    QPIKConfig,
    TaskRegistry,
    TaskKind,
    WeightRegime,
    SO3Task,
    GravityTask,
)
from biomechanical_analysis.utils.math_utils import (
    rotation_matrix_x,
    rotation_matrix_y,
    rotation_matrix_z,
    so3_exp,
    homogeneous_transform,
)


SENSOR_OFFSET = rotation_matrix_x(np.pi / 2)


def build_registry(config, human_model):
    qp = QPInverseKinematics(QPIKConfig(), human_model.nr_of_dofs)
    registry = TaskRegistry()
    registry.initialize(config, human_model, qp)
    return registry, qp


@pytest.fixture
def full_config(ik_config):
    config = copy.deepcopy(ik_config)
    config["TORSO_TASK"]["rotation_matrix"] = list(SENSOR_OFFSET.reshape(-1))
    config["tasks"] += ["LEG_GRAVITY", "LEG_CONTACT", "REGULARIZATION", "LIMITS"]
    config["LEG_GRAVITY"] = {
        "type": "GravityTask",
        "node_number": 7,
        "frame_name": "RightUpperLeg",
        "kp": 2.0,
        "vertical_force_threshold": 50.0,
        "weight_swing": 1.0,
        "weight_stance": 4.0,
    }
    config["LEG_CONTACT"] = {
        "type": "FloorContactTask",
        "node_number": 9,
        "frame_name": "LeftUpperLeg",
        "vertical_force_threshold": 50.0,
        "weight_swing": 0.0,
        "weight_stance": 1.0,
    }
    config["REGULARIZATION"] = {"type": "JointRegularizationTask", "kp": 1.0, "weight": 0.01}
    config["LIMITS"] = {"type": "JointConstraintTask", "k_limits": 2.0}
    return config


def random_rotation(rng):
    return so3_exp(rng.uniform(-np.pi, np.pi, 3) * 0.5)


class TestInitialization:
    """Test task construction from configuration."""

    def test_all_task_types(self, full_config, human_model):
        registry, qp = build_registry(full_config, human_model)
        assert registry.node_ids() == [3, 5, 7, 9]
        assert registry.has_node(7) and not registry.has_node(8)
        assert registry.nodes[7].kind == TaskKind.GRAVITY
        assert registry.nodes[9].kind == TaskKind.FLOOR_CONTACT
        assert set(registry.joint_tasks) == {"REGULARIZATION", "LIMITS"}
        assert set(qp.tasks) == {"PELVIS_TASK", "TORSO_TASK", "LEG_GRAVITY", "LEG_CONTACT", "REGULARIZATION"}
        assert set(qp.constraints) == {"LIMITS"}

    def test_unknown_type_names_task(self, ik_config, human_model):
        ik_config["TORSO_TASK"]["type"] = "SE3Task"
        with pytest.raises(ConfigurationError) as info:
            build_registry(ik_config, human_model)
        assert info.value.group == "TORSO_TASK"
        assert info.value.parameter == "type"

    def test_missing_parameter_names_task_and_parameter(self, ik_config, human_model):
        del ik_config["TORSO_TASK"]["kp_angular"]
        with pytest.raises(ConfigurationError) as info:
            build_registry(ik_config, human_model)
        assert info.value.group == "TORSO_TASK"
        assert info.value.parameter == "kp_angular"

    def test_non_numeric_node_number_names_task(self, ik_config, human_model):
        ik_config["TORSO_TASK"]["node_number"] = "five"
        with pytest.raises(ConfigurationError) as info:
            build_registry(ik_config, human_model)
        assert info.value.group == "TORSO_TASK"
        assert info.value.parameter == "node_number"

    def test_non_numeric_threshold_names_task(self, full_config, human_model):
        full_config["LEG_GRAVITY"]["vertical_force_threshold"] = "heavy"
        with pytest.raises(ConfigurationError) as info:
            build_registry(full_config, human_model)
        assert info.value.group == "LEG_GRAVITY"
        assert info.value.parameter == "vertical_force_threshold"

    def test_missing_offset_defaults_to_identity(self, ik_config, human_model, caplog):
        del ik_config["TORSO_TASK"]["rotation_matrix"]
        with caplog.at_level(logging.WARNING):
            registry, _ = build_registry(ik_config, human_model)
        assert np.allclose(registry.nodes[5].IMU_R_link, np.eye(3))
        assert "rotation_matrix" in caplog.text

    def test_duplicate_node_across_types(self, full_config, human_model):
        full_config["LEG_GRAVITY"]["node_number"] = 5
        with pytest.raises(ConfigurationError) as info:
            build_registry(full_config, human_model)
        assert info.value.parameter == "node_number"

    def test_unknown_frame(self, ik_config, human_model):
        ik_config["TORSO_TASK"]["frame_name"] = "Head"
        with pytest.raises(ConfigurationError):
            build_registry(ik_config, human_model)

    def test_non_positive_k_limits(self, full_config, human_model):
        full_config["LIMITS"]["k_limits"] = 0.0
        with pytest.raises(ConfigurationError):
            build_registry(full_config, human_model)


class TestSetPoints:
    """Test set-point composition."""

    def test_set_point_applies_offset(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        measured = rotation_matrix_z(0.3)
        assert registry.set_orientation_set_point(5, measured, np.array([0.0, 0.0, 1.0]))
        task = registry.nodes[5].task
        assert np.allclose(task.target_rotation, measured @ SENSOR_OFFSET)
        assert np.allclose(task.target_angular_velocity, [0.0, 0.0, 1.0])

    def test_quaternion_measurement(self, ik_config, human_model):
        registry, _ = build_registry(ik_config, human_model)
        q = np.array([np.cos(0.2), 0.0, 0.0, np.sin(0.2)])
        assert registry.set_orientation_set_point(3, q)
        assert np.allclose(registry.nodes[3].task.target_rotation, rotation_matrix_z(0.4))

    def test_unregistered_node_changes_nothing(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        before = {n: e.task.target_rotation.copy() for n, e in registry.nodes.items()
                  if isinstance(e.task, SO3Task)}
        assert not registry.set_orientation_set_point(42, rotation_matrix_z(1.0))
        assert not registry.calibrate_node(42, rotation_matrix_z(1.0))
        for node, rotation in before.items():
            assert np.allclose(registry.nodes[node].task.target_rotation, rotation)
            assert np.allclose(registry.nodes[node].calibration_matrix, np.eye(3))

    def test_non_finite_measurement_changes_nothing(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        assert registry.set_orientation_set_point(5, rotation_matrix_z(0.3))
        before = registry.nodes[5].task.target_rotation.copy()
        assert not registry.set_orientation_set_point(5, np.full((3, 3), np.nan))
        assert not registry.set_orientation_set_point(5, np.zeros(4))
        assert not registry.set_orientation_set_point(5, np.eye(3), [np.nan, 0.0, 0.0])
        assert not registry.set_gravity_set_point(7, np.full((3, 3), np.inf))
        assert not registry.calibrate_node(5, np.zeros(4))
        assert np.allclose(registry.nodes[5].task.target_rotation, before)
        assert np.allclose(registry.nodes[5].calibration_matrix, np.eye(3))

    def test_wrong_task_kind_is_rejected(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        assert not registry.set_orientation_set_point(7, np.eye(3))
        assert not registry.set_gravity_set_point(5, np.eye(3))
        assert not registry.set_vertical_force(5, 100.0)

    def test_gravity_set_point_uses_tilt(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        assert registry.set_gravity_set_point(7, rotation_matrix_y(0.3))
        task = registry.nodes[7].task
        assert isinstance(task, GravityTask)
        assert np.allclose(task.target_vertical, rotation_matrix_y(0.3).T @ [0.0, 0.0, 1.0])

    def test_vertical_force_drives_weight_once_per_update(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        assert registry.set_vertical_force(9, 120.0)
        provider = registry.nodes[9].weight_provider
        assert provider.state == WeightRegime.SWING
        registry.update_weights()
        assert provider.state == WeightRegime.STANCE
        assert np.allclose(provider.get_output(), [1.0, 1.0, 1.0])


class TestCalibration:
    """Test calibration matrices."""

    def test_round_trip_reproduces_reference(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        rng = np.random.default_rng(0)
        for _ in range(10):
            measured = random_rotation(rng)
            reference = random_rotation(rng)
            assert registry.calibrate_node(5, measured, reference)
            assert registry.set_orientation_set_point(5, measured)
            assert np.allclose(registry.nodes[5].task.target_rotation, reference, atol=1e-9)

    def test_tpose_calibration_gives_identity(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        measured = rotation_matrix_x(0.4) @ rotation_matrix_z(-1.2)
        assert registry.calibrate_node(5, measured)
        registry.set_orientation_set_point(5, measured)
        assert np.allclose(registry.nodes[5].task.target_rotation, np.eye(3))

    def test_clear_calibration(self, full_config, human_model):
        registry, _ = build_registry(full_config, human_model)
        registry.calibrate_node(5, rotation_matrix_z(0.5))
        registry.clear_calibration()
        assert np.allclose(registry.nodes[5].calibration_matrix, np.eye(3))

    def test_world_yaw_only_corrects_heading(self, ik_config, human_model):
        registry, _ = build_registry(ik_config, human_model)
        human_model.set_robot_state(homogeneous_transform(rotation_matrix_z(0.7), np.zeros(3)),
                                    np.zeros(3), np.zeros(6), np.zeros(3))
        measured = rotation_matrix_z(-0.2)
        assert registry.calibrate_world_yaw({3: measured})
        assert np.allclose(registry.nodes[3].calibration_matrix, rotation_matrix_z(0.9))
        registry.set_orientation_set_point(3, measured)
        assert np.allclose(registry.nodes[3].task.target_rotation, rotation_matrix_z(0.7))

    def test_all_with_world_matches_model(self, ik_config, human_model):
        registry, _ = build_registry(ik_config, human_model)
        human_model.set_robot_state(np.eye(4), [0.5, 0.0, 0.0], np.zeros(6), np.zeros(3))
        readings = {3: rotation_matrix_x(0.3), 5: rotation_matrix_y(-0.6)}
        assert registry.calibrate_all_with_world(readings)
        for node, frame in ((3, "Pelvis"), (5, "Torso")):
            registry.set_orientation_set_point(node, readings[node])
            expected = human_model.get_world_transform(frame)[:3, :3]
            assert np.allclose(registry.nodes[node].task.target_rotation, expected)

    def test_world_calibration_with_unknown_node_is_noop(self, ik_config, human_model):
        registry, _ = build_registry(ik_config, human_model)
        assert not registry.calibrate_all_with_world({3: rotation_matrix_x(0.3), 99: np.eye(3)})
        assert np.allclose(registry.nodes[3].calibration_matrix, np.eye(3))
