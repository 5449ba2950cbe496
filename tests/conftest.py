"""
Shared fixtures: a four-segment floating-base human built with pinocchio

    Pelvis (free-flyer, 10 kg)
    +-- jL5S1_rotz      -> Torso         (30 kg)
    +-- jRightHip_roty  -> RightUpperLeg (15 kg)
    +-- jLeftHip_roty   -> LeftUpperLeg  (15 kg)
"""

import numpy as np
import pinocchio as pin
import pytest

from biomechanical_analysis.utils import HumanModel, Sensor, SensorType

HUMAN_MASS = 70.0
IDENTITY_ROW_MAJOR = [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0]


def _add_link(model, parent, joint_model, placement, joint_name, link_name, mass, com,
              lower=None, upper=None):
    if lower is not None:
        joint_id = model.addJoint(parent, joint_model, placement, joint_name,
                                  np.array([100.0]), np.array([10.0]),
                                  np.array([lower]), np.array([upper]))
    else:
        joint_id = model.addJoint(parent, joint_model, placement, joint_name)
    model.appendBodyToJoint(joint_id, pin.Inertia.FromSphere(mass, 0.05),
                            pin.SE3(np.eye(3), np.asarray(com, dtype=float)))
    model.addBodyFrame(link_name, joint_id, pin.SE3.Identity(), 0)
    return joint_id


def build_human_model(with_torso=True, extra_joint=False, pelvis_mass=10.0):
    model = pin.Model()
    root = model.addJoint(0, pin.JointModelFreeFlyer(), pin.SE3.Identity(), "root_joint")
    model.appendBodyToJoint(root, pin.Inertia.FromSphere(pelvis_mass, 0.1), pin.SE3.Identity())
    model.addBodyFrame("Pelvis", root, pin.SE3.Identity(), 0)

    if with_torso:
        _add_link(model, root, pin.JointModelRZ(),
                  pin.SE3(np.eye(3), np.array([0.0, 0.0, 0.1])),
                  "jL5S1_rotz", "Torso", 30.0, [0.0, 0.0, 0.25])
    _add_link(model, root, pin.JointModelRY(),
              pin.SE3(np.eye(3), np.array([0.0, -0.1, -0.1])),
              "jRightHip_roty", "RightUpperLeg", 15.0, [0.0, 0.0, -0.2],
              lower=-2.0, upper=2.0)
    _add_link(model, root, pin.JointModelRY(),
              pin.SE3(np.eye(3), np.array([0.0, 0.1, -0.1])),
              "jLeftHip_roty", "LeftUpperLeg", 15.0, [0.0, 0.0, -0.2],
              lower=-2.0, upper=2.0)
    if extra_joint:
        _add_link(model, root, pin.JointModelRX(),
                  pin.SE3(np.eye(3), np.array([0.0, 0.0, 0.3])),
                  "jFake", "FakeLink", 1.0, [0.0, 0.0, 0.05])
    return model


TORSO_SENSORS = [
    Sensor("TorsoAccelerometer", SensorType.ACCELEROMETER, "Torso"),
    Sensor("TorsoAngularAccelerometer", SensorType.THREE_AXIS_ANGULAR_ACCELEROMETER, "Torso"),
]


@pytest.fixture
def human_model():
    return HumanModel(build_human_model(), sensors=TORSO_SENSORS, base_link="Pelvis")


@pytest.fixture
def wrench_model():
    """Reduced model: no torso, one joint unknown to the full model"""
    return HumanModel(build_human_model(with_torso=False, extra_joint=True, pelvis_mass=40.0),
                      base_link="Pelvis")


def so3_task_group(node, frame, kp=10.0, rotation_matrix=None):
    group = {
        "type": "SO3Task",
        "node_number": node,
        "frame_name": frame,
        "kp_angular": kp,
        "weight": [10.0, 10.0, 10.0],
    }
    if rotation_matrix is not None:
        group["rotation_matrix"] = list(rotation_matrix)
    return group


@pytest.fixture
def ik_config():
    return {
        "IK": {"robot_velocity_variable_name": "robot_velocity"},
        "tasks": ["PELVIS_TASK", "TORSO_TASK"],
        "PELVIS_TASK": so3_task_group(3, "Pelvis", rotation_matrix=IDENTITY_ROW_MAJOR),
        "TORSO_TASK": so3_task_group(5, "Torso", rotation_matrix=IDENTITY_ROW_MAJOR),
    }


def map_priors(**overrides):
    group = {
        "mu_dyn_variables": 0.0,
        "cov_dyn_variables": 1.0e4,
        "default_cov_measurements": 1.0e-4,
    }
    group.update(overrides)
    return group


@pytest.fixture
def id_config():
    external = map_priors(
        specificElements=["Pelvis"],
        Pelvis=[1.0e2] * 6,
        cov_measurements_RCM_SENSOR=[1.0e-6] * 6,
    )
    external.update({
        "wrenchSources": ["RIGHT_SHOE", "LEFT_SHOE", "PELVIS_RESIDUAL"],
        "RIGHT_SHOE": {
            "outputFrame": "RightUpperLeg",
            "type": "fixed",
            "position": [0.0, 0.0, 0.0],
            "orientation": IDENTITY_ROW_MAJOR,
        },
        "LEFT_SHOE": {
            "outputFrame": "LeftUpperLeg",
            "type": "fixed",
            "position": [0.0, 0.0, 0.0],
            "orientation": IDENTITY_ROW_MAJOR,
        },
        "PELVIS_RESIDUAL": {
            "outputFrame": "Pelvis",
            "type": "dummy",
            "values": [0.0] * 6,
        },
    })
    joint_torques = map_priors(
        SENSOR_REMOVAL={"THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR": "*"}
    )
    return {
        "humanMass": HUMAN_MASS,
        "JOINT_TORQUES": joint_torques,
        "EXTERNAL_WRENCHES": external,
    }


def standing_wrenches(gravity=np.array([0.0, 0.0, -9.81])):
    """Body weight split between the two shoes"""
    force = -HUMAN_MASS * gravity / 2.0
    wrench = np.concatenate([force, np.zeros(3)])
    return {"RightUpperLeg": wrench.copy(), "LeftUpperLeg": wrench.copy()}
