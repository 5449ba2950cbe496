"""
Inverse kinematics modules for human motion estimation
Task-priority velocity QP with forward Euler integration of the floating base
"""

from .human_ik import HumanIK, IKState, NodeData
from .qp_ik import QPInverseKinematics, QPIKConfig, VariablesHandler, IKOutput
from .task import Task, TaskPriority, SO3Task, GravityTask, FloorContactTask, JointRegularizationTask
from .constraints import JointConstraintTask
from .task_registry import TaskRegistry, TaskKind, NodeTask
from .weight_provider import MultiStateWeightProvider, WeightProviderConfig, WeightRegime
from .integrator import FloatingBaseSystemKinematics, ForwardEuler

__all__ = [
    'HumanIK',
    'IKState',
    'NodeData',
    'QPInverseKinematics',
    'QPIKConfig',
    'VariablesHandler',
    'IKOutput',
    'Task',
    'TaskPriority',
    'SO3Task',
    'GravityTask',
    'FloorContactTask',
    'JointRegularizationTask',
    'JointConstraintTask',
    'TaskRegistry',
    'TaskKind',
    'NodeTask',
    'MultiStateWeightProvider',
    'WeightProviderConfig',
    'WeightRegime',
    'FloatingBaseSystemKinematics',
    'ForwardEuler'
]
