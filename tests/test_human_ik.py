"""
Tests for the human inverse kinematics facade.
Run with: pytest tests/ -v
"""

import copy
from pathlib import Path

import numpy as np
import pytest

from biomechanical_analysis.config import load_config
from biomechanical_analysis.errors import SolveError
from biomechanical_analysis.ik import HumanIK, IKState, NodeData, WeightRegime
from biomechanical_analysis.utils.math_utils import rotation_matrix_x, rotation_matrix_z

CONFIG_PATH = Path(__file__).parent.parent / "config" / "human_estimation.yaml"


@pytest.fixture
def solver(ik_config, human_model):
    ik = HumanIK()
    assert ik.initialize(ik_config, human_model)
    assert ik.set_dt(0.01)
    return ik


class TestLifecycle:
    """Test initialization and step configuration."""

    def test_initialize(self, solver):
        assert solver.state == IKState.INITIALIZED
        assert solver.get_dofs_number() == 3
        assert solver.get_dt() == pytest.approx(0.01)

    def test_uninitialized_calls_fail(self):
        ik = HumanIK()
        assert not ik.set_dt(0.01)
        assert not ik.advance()
        assert not ik.update_orientation_task(3, np.eye(3))
        assert not ik.clear_calibration()

    def test_bad_config_fails(self, ik_config, human_model):
        del ik_config["IK"]
        ik = HumanIK()
        assert not ik.initialize(ik_config, human_model)
        assert ik.state == IKState.UNINITIALIZED

    def test_non_numeric_parameter_fails(self, ik_config, human_model):
        ik_config["TORSO_TASK"]["node_number"] = "five"
        ik = HumanIK()
        assert not ik.initialize(ik_config, human_model)
        assert ik.state == IKState.UNINITIALIZED

    def test_non_numeric_solver_setting_fails(self, ik_config, human_model):
        ik_config["IK"]["max_iter"] = "many"
        assert not HumanIK().initialize(ik_config, human_model)

    def test_advance_without_dt_fails(self, ik_config, human_model):
        ik = HumanIK()
        assert ik.initialize(ik_config, human_model)
        assert not ik.advance()

    def test_non_positive_dt_rejected(self, solver):
        assert not solver.set_dt(-1.0)
        assert solver.get_dt() == pytest.approx(0.01)

    def test_shipped_config(self, human_model):
        ik = HumanIK()
        assert ik.initialize(load_config(str(CONFIG_PATH)), human_model)
        assert ik.set_dt(0.01)
        assert ik.update_floor_contact_tasks({9: [0.0, 0.0, 343.0, 0.0, 0.0, 0.0],
                                              10: [0.0, 0.0, 343.0, 0.0, 0.0, 0.0]})
        assert ik.update_joint_regularization_task(np.zeros(3))
        assert ik.update_gravity_task(7, np.eye(3))
        assert ik.update_floor_contact_task(9, 343.0)
        assert not ik.update_gravity_task(5, np.eye(3))
        assert ik.advance()
        assert ik.state == IKState.ADVANCING


class TestTracking:
    """Test the closed loop on the fixture model."""

    def test_identity_set_point_keeps_state(self, solver, human_model):
        assert solver.update_orientation_and_gravity_tasks({
            3: NodeData(np.eye(3)),
            5: NodeData(np.eye(3)),
        })
        assert solver.advance()
        assert np.allclose(solver.get_joint_positions(), np.zeros(3), atol=1e-5)
        assert np.allclose(solver.get_base_orientation(), np.eye(3), atol=1e-5)
        assert np.allclose(solver.get_base_position(), np.zeros(3), atol=1e-5)

    def test_torso_rotation_converges(self, solver, human_model):
        assert solver.update_orientation_task(5, rotation_matrix_z(np.pi / 2))
        for _ in range(300):
            assert solver.advance()
        assert solver.get_joint_positions()[0] == pytest.approx(np.pi / 2, abs=1e-2)
        assert np.allclose(solver.get_base_orientation(), np.eye(3), atol=1e-2)
        assert np.allclose(human_model.get_joint_positions(), solver.get_joint_positions())

    def test_pelvis_tracks_measured_rotation(self, solver):
        target = rotation_matrix_x(0.3)
        solver.update_orientation_task(3, target)
        solver.update_orientation_task(5, target)
        for _ in range(300):
            solver.advance()
        assert np.allclose(solver.get_base_orientation(), target, atol=1e-2)
        assert np.allclose(solver.get_base_angular_velocity(), np.zeros(3), atol=1e-2)
        assert np.allclose(solver.get_base_linear_velocity(), np.zeros(3), atol=1e-2)
        assert np.allclose(solver.get_joint_velocities(), np.zeros(3), atol=1e-2)

    def test_unknown_node_leaves_tasks_unchanged(self, solver):
        before = solver.registry.nodes[3].task.target_rotation.copy()
        assert not solver.update_orientation_and_gravity_tasks({
            3: NodeData(rotation_matrix_z(1.0)),
            12: NodeData(np.eye(3)),
        })
        assert np.allclose(solver.registry.nodes[3].task.target_rotation, before)

    def test_floor_contact_on_orientation_node_fails(self, solver):
        assert not solver.update_floor_contact_tasks({3: np.zeros(6)})

    def test_regularization_requires_task(self, solver):
        assert not solver.update_joint_regularization_task(np.zeros(3))


class TestCalibrationFacade:
    """Test calibration through the solver."""

    def test_tpose_calibration_removes_mounting(self, solver):
        mounting = rotation_matrix_z(0.8)
        assert solver.calibrate_node(5, mounting)
        assert solver.update_orientation_task(5, mounting)
        assert solver.advance()
        assert np.allclose(solver.get_joint_positions(), np.zeros(3), atol=1e-5)

    def test_world_calibration(self, solver):
        readings = {3: NodeData(rotation_matrix_x(0.2)), 5: NodeData(rotation_matrix_z(-0.4))}
        assert solver.calibrate_all_with_world(readings)
        assert solver.update_orientation_and_gravity_tasks(readings)
        assert solver.advance()
        assert np.allclose(solver.get_joint_positions(), np.zeros(3), atol=1e-5)
        assert solver.clear_calibration()


class TestFailedCycle:
    """Test that a failed cycle leaves the estimator untouched."""

    @pytest.fixture
    def contact_solver(self, ik_config, human_model):
        config = copy.deepcopy(ik_config)
        config["tasks"] += ["LEG_CONTACT"]
        config["LEG_CONTACT"] = {
            "type": "FloorContactTask",
            "node_number": 9,
            "frame_name": "LeftUpperLeg",
            "vertical_force_threshold": 50.0,
            "weight_swing": 0.0,
            "weight_stance": 1.0,
        }
        ik = HumanIK()
        assert ik.initialize(config, human_model)
        assert ik.set_dt(0.01)
        return ik

    def test_solver_failure_keeps_weight_regime(self, contact_solver, monkeypatch):
        provider = contact_solver.registry.nodes[9].weight_provider
        assert contact_solver.update_floor_contact_task(9, 120.0)

        def failing_advance(human_model):
            raise SolveError("no solution")

        monkeypatch.setattr(contact_solver.qp, "advance", failing_advance)
        assert not contact_solver.advance()
        assert provider.state == WeightRegime.SWING

        monkeypatch.undo()
        assert contact_solver.advance()
        assert provider.state == WeightRegime.STANCE

    def test_integration_failure_keeps_weight_regime(self, contact_solver, monkeypatch):
        provider = contact_solver.registry.nodes[9].weight_provider
        assert contact_solver.update_floor_contact_task(9, 120.0)
        positions = contact_solver.get_joint_positions()

        def failing_integrate():
            raise SolveError("diverged")

        monkeypatch.setattr(contact_solver.integrator, "integrate", failing_integrate)
        assert not contact_solver.advance()
        assert provider.state == WeightRegime.SWING
        assert np.allclose(contact_solver.get_joint_positions(), positions)

    def test_non_finite_reading_is_rejected(self, solver):
        assert not solver.update_orientation_task(3, np.full((3, 3), np.nan))
        assert not solver.update_orientation_task(5, np.zeros(4))
        assert solver.advance()
        assert np.all(np.isfinite(solver.get_joint_positions()))
