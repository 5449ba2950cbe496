"""
Inverse dynamics modules for human motion estimation
Two-stage sparse MAP estimation of external wrenches and joint torques
"""

from .human_id import HumanID
from .estimation_graph import (
    EstimationGraph,
    EstimationGraphOptions,
    GraphVariant,
    GraphSensorType,
    GraphSensor
)
from .map_solver import SparseMAPSolver
from .pipeline import EstimationPipeline, MAPEstimationParams
from .sensors import SensorRemovalPolicy, remove_sensors
from .wrench_source import WrenchSourceModel, WrenchSource, WrenchSourceType

__all__ = [
    'HumanID',
    'EstimationGraph',
    'EstimationGraphOptions',
    'GraphVariant',
    'GraphSensorType',
    'GraphSensor',
    'SparseMAPSolver',
    'EstimationPipeline',
    'MAPEstimationParams',
    'SensorRemovalPolicy',
    'remove_sensors',
    'WrenchSourceModel',
    'WrenchSource',
    'WrenchSourceType'
]
