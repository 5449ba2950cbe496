#!/usr/bin/env python3
"""
Task-priority QP inverse kinematics
Velocity-level IK with weighted and hard tasks solved by OSQP
"""

import logging
import time
import numpy as np
import osqp
from scipy import sparse
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Any

from .task import Task, TaskPriority
from .constraints import JointConstraintTask
from .weight_provider import MultiStateWeightProvider
from ..config import get_parameter, get_float, get_int
from ..errors import ConfigurationError, SolveError

logger = logging.getLogger(__name__)


@dataclass
class QPIKConfig:
    """QP inverse kinematics configuration"""
    robot_velocity_variable_name: str = "robot_velocity"
    eps_abs: float = 1e-6
    eps_rel: float = 1e-6
    max_iter: int = 10000
    velocity_regularization: float = 1e-6  # Damping on the generalized velocity
    verbose: bool = False

    @classmethod
    def from_group(cls, group: Dict[str, Any]) -> 'QPIKConfig':
        """Read the IK group"""
        context = "[QPInverseKinematics]"
        config = cls(
            robot_velocity_variable_name=str(get_parameter(
                group, "robot_velocity_variable_name", context, group_name="IK")),
            eps_abs=get_float(group, "eps_abs", context, default=cls.eps_abs, group_name="IK"),
            eps_rel=get_float(group, "eps_rel", context, default=cls.eps_rel, group_name="IK"),
            max_iter=get_int(group, "max_iter", context, default=cls.max_iter, group_name="IK"),
            velocity_regularization=get_float(
                group, "velocity_regularization", context, default=cls.velocity_regularization, group_name="IK"),
            verbose=bool(get_parameter(group, "verbose", context, default=cls.verbose))
        )
        if config.velocity_regularization < 0.0 or config.max_iter <= 0:
            raise ConfigurationError(
                f"{context} Invalid solver settings in the IK group", group="IK"
            )
        return config


class VariablesHandler:
    """Declares the layout of the QP decision vector"""

    def __init__(self):
        self._variables: Dict[str, Tuple[int, int]] = {}
        self.size = 0

    def add_variable(self, name: str, size: int) -> bool:
        """Append a variable, fails on duplicates or empty sizes"""
        if name in self._variables or size <= 0:
            return False
        self._variables[name] = (self.size, size)
        self.size += size
        return True

    def get_variable(self, name: str) -> Optional[slice]:
        if name not in self._variables:
            return None
        offset, size = self._variables[name]
        return slice(offset, offset + size)


@dataclass
class TaskEntry:
    """Task registered in the QP"""
    task: Task
    priority: TaskPriority
    weight: Optional[np.ndarray] = None
    weight_provider: Optional[MultiStateWeightProvider] = None

    def current_weight(self) -> np.ndarray:
        if self.weight_provider is not None:
            return self.weight_provider.get_output()
        return self.weight


@dataclass
class IKOutput:
    """QP IK solution"""
    base_velocity: np.ndarray   # [linear, angular], world-aligned
    joint_velocity: np.ndarray
    solve_time_ms: float = 0.0


class QPInverseKinematics:
    """
    Velocity-level inverse kinematics as a single QP

    The optimization problem:
    min  sum_low ||A_i x - b_i||^2_{W_i} + lambda ||x||^2
    s.t. A_j x = b_j                 (high priority tasks)
         l_k <= A_k x <= u_k         (joint constraints)

    Decision variables: x = [base linear, base angular, joint velocities]
    """

    def __init__(self, config: QPIKConfig, num_joints: int):
        self.config = config
        self.n_joints = num_joints
        self.nv = num_joints + 6

        self.tasks: Dict[str, TaskEntry] = {}
        self.constraints: Dict[str, JointConstraintTask] = {}

        self._velocity_slice: Optional[slice] = None
        self._output: Optional[IKOutput] = None
        self._output_valid = False

        # Statistics
        self.solve_count = 0
        self.total_solve_time = 0.0

    @property
    def is_finalized(self) -> bool:
        return self._velocity_slice is not None

    def add_task(
        self,
        task: Task,
        name: str,
        priority: TaskPriority,
        weight: Optional[np.ndarray] = None,
        weight_provider: Optional[MultiStateWeightProvider] = None
    ):
        """
        Register a task

        Low priority tasks need either a constant weight vector or a weight
        provider, high priority tasks take neither.
        """
        if self.is_finalized:
            raise ConfigurationError(f"Cannot add task {name} after finalize", group=name)
        if name in self.tasks or name in self.constraints:
            raise ConfigurationError(f"Task {name} already registered", group=name)

        if priority == TaskPriority.LOW:
            if (weight is None) == (weight_provider is None):
                raise ConfigurationError(
                    f"Task {name} needs exactly one of weight or weight provider", group=name
                )
            if weight is not None:
                weight = np.broadcast_to(np.asarray(weight, dtype=float), (task.dim,)).copy()
                if np.any(weight < 0.0):
                    raise ConfigurationError(f"Negative weight for task {name}", group=name)
            elif weight_provider.get_output().size != task.dim:
                raise ConfigurationError(
                    f"Weight provider of task {name} has size "
                    f"{weight_provider.get_output().size}, expected {task.dim}",
                    group=name
                )
        elif weight is not None or weight_provider is not None:
            raise ConfigurationError(f"High priority task {name} cannot be weighted", group=name)

        self.tasks[name] = TaskEntry(task, priority, weight, weight_provider)

    def add_constraint(self, constraint: JointConstraintTask, name: str):
        """Register an inequality constraint"""
        if self.is_finalized:
            raise ConfigurationError(f"Cannot add constraint {name} after finalize", group=name)
        if name in self.tasks or name in self.constraints:
            raise ConfigurationError(f"Task {name} already registered", group=name)
        self.constraints[name] = constraint

    def finalize(self, variables_handler: VariablesHandler):
        """Bind the QP to the declared decision variable layout"""
        name = self.config.robot_velocity_variable_name
        velocity_slice = variables_handler.get_variable(name)
        if velocity_slice is None:
            raise ConfigurationError(f"Variable {name} is not declared", group="IK",
                                     parameter="robot_velocity_variable_name")
        if velocity_slice.stop - velocity_slice.start != self.nv:
            raise ConfigurationError(
                f"Variable {name} has size {velocity_slice.stop - velocity_slice.start}, "
                f"expected {self.nv}",
                group="IK"
            )
        if variables_handler.size != self.nv:
            raise ConfigurationError("Only the robot velocity variable is supported", group="IK")
        self._velocity_slice = velocity_slice

    def advance(self, human_model) -> IKOutput:
        """
        Solve the QP for the current model state

        Raises:
            SolveError: if a task is invalid or the solver does not converge
        """
        if not self.is_finalized:
            raise SolveError("The QP problem is not finalized")

        self._output_valid = False
        start_time = time.time()

        P, q_vec, A, l, u = self._build_problem(human_model)
        x = self._solve_qp(P, q_vec, A, l, u)

        solve_time = (time.time() - start_time) * 1000
        self.solve_count += 1
        self.total_solve_time += solve_time

        velocity = x[self._velocity_slice]
        self._output = IKOutput(
            base_velocity=velocity[:6].copy(),
            joint_velocity=velocity[6:].copy(),
            solve_time_ms=solve_time
        )
        self._output_valid = True
        return self._output

    def _build_problem(
        self,
        human_model
    ) -> Tuple[sparse.csc_matrix, np.ndarray, sparse.csc_matrix, np.ndarray, np.ndarray]:
        """Build QP cost and constraint matrices"""
        n = self.nv
        P = self.config.velocity_regularization * np.eye(n)
        q_vec = np.zeros(n)

        A_rows: List[np.ndarray] = []
        lb_list: List[np.ndarray] = []
        ub_list: List[np.ndarray] = []

        for name, entry in self.tasks.items():
            task = entry.task
            task.update(human_model)
            if not task.is_valid():
                raise SolveError(f"Task {name} produced an invalid output")

            if entry.priority == TaskPriority.HIGH:
                A_rows.append(task.A)
                lb_list.append(task.b)
                ub_list.append(task.b)
                continue

            # Cost: (A x - b)' W (A x - b)
            w = entry.current_weight()
            WA = w[:, None] * task.A
            P += task.A.T @ WA
            q_vec -= WA.T @ task.b

        for name, constraint in self.constraints.items():
            constraint.update(human_model)
            if not constraint.is_valid():
                raise SolveError(f"Constraint {name} produced an invalid output")
            A_rows.append(constraint.A)
            lb_list.append(constraint.lower)
            ub_list.append(constraint.upper)

        if A_rows:
            A = np.vstack(A_rows)
            l = np.concatenate(lb_list)
            u = np.concatenate(ub_list)
        else:
            A = np.eye(n)
            l = np.full(n, -np.inf)
            u = np.full(n, np.inf)

        # Make symmetric
        P = 0.5 * (P + P.T)

        return (
            sparse.triu(sparse.csc_matrix(P), format='csc'),
            q_vec,
            sparse.csc_matrix(A),
            l,
            u
        )

    def _solve_qp(
        self,
        P: sparse.csc_matrix,
        q: np.ndarray,
        A: sparse.csc_matrix,
        l: np.ndarray,
        u: np.ndarray
    ) -> np.ndarray:
        """Solve QP using OSQP"""
        # Sparsity changes with the configuration, a fresh setup keeps it consistent
        solver = osqp.OSQP()
        try:
            solver.setup(
                P=P,
                q=q,
                A=A,
                l=l,
                u=u,
                verbose=self.config.verbose,
                eps_abs=self.config.eps_abs,
                eps_rel=self.config.eps_rel,
                max_iter=self.config.max_iter
            )
        except ValueError as e:
            raise SolveError(f"QP setup failed: {e}") from e
        result = solver.solve(raise_error=False)

        if result.info.status != 'solved':
            raise SolveError(f"QP solver status: {result.info.status}")
        if result.x is None or not np.all(np.isfinite(result.x)):
            raise SolveError("QP solver returned a non-finite solution")

        return np.asarray(result.x, dtype=float)

    def is_output_valid(self) -> bool:
        return self._output_valid

    def get_output(self) -> Optional[IKOutput]:
        return self._output

    def get_statistics(self) -> Dict:
        """Get solver statistics"""
        return {
            'solve_count': self.solve_count,
            'total_solve_time_ms': self.total_solve_time,
            'avg_solve_time_ms': (
                self.total_solve_time / self.solve_count
                if self.solve_count > 0 else 0.0
            )
        }
