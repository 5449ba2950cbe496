"""Utility modules for human state estimation"""

from .math_utils import (
    rotation_matrix_x,
    rotation_matrix_y,
    rotation_matrix_z,
    quaternion_to_rotation_matrix,
    as_rotation_matrix,
    skew_symmetric,
    so3_exp,
    so3_log,
    wrench_transform
)

from .human_model import HumanModel, ModelState, Sensor, SensorType

__all__ = [
    'rotation_matrix_x', 'rotation_matrix_y', 'rotation_matrix_z',
    'quaternion_to_rotation_matrix', 'as_rotation_matrix',
    'skew_symmetric', 'so3_exp', 'so3_log', 'wrench_transform',
    'HumanModel', 'ModelState', 'Sensor', 'SensorType'
]
