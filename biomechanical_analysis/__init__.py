"""
Biomechanical Analysis
======================

Real-time kinematic and dynamic state estimation of a human body model
from wearable sensors: task-priority inverse kinematics driven by IMU
orientations, and two-stage MAP estimation of external wrenches and
joint torques.
"""

__version__ = "0.1.0"
