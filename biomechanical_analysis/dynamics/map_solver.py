#!/usr/bin/env python3
"""
Sparse maximum-a-posteriori solver for the estimation graph

With diagonal Gaussian priors
    d ~ N(mu_d, Sigma_d),  D d + b_D ~ N(0, Sigma_D),  y - Y d - b_Y ~ N(0, Sigma_y)
the posterior mean solves
    (D' W_D D + Sigma_d^-1 + Y' W_y Y) d = Sigma_d^-1 mu_d - D' W_D b_D + Y' W_y (y - b_Y)
with W = Sigma^-1.
"""

import logging
import warnings
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve, MatrixRankWarning
from typing import Optional

from .estimation_graph import EstimationGraph
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class SparseMAPSolver:
    """MAP estimate of the dynamic variables of an EstimationGraph"""

    def __init__(self, graph: EstimationGraph):
        self.graph = graph
        nd = graph.n_dynamic_variables

        self.mu_d = np.zeros(nd)
        self.sigma_d: Optional[np.ndarray] = None
        self.sigma_D = np.full(graph.n_dynamic_equations, 1e-4)
        self.sigma_y: Optional[np.ndarray] = None

        self.measurements = np.zeros(graph.n_measurements)
        self._estimate = np.zeros(nd)

    @staticmethod
    def _diagonal(values, size: int, name: str) -> np.ndarray:
        values = np.asarray(values, dtype=float).reshape(-1)
        if values.size == 1:
            values = np.full(size, values.item())
        if values.size != size:
            raise ConfigurationError(f"{name} has {values.size} elements, expected {size}")
        if np.any(values <= 0.0) or not np.all(np.isfinite(values)):
            raise ConfigurationError(f"{name} must be positive and finite")
        return values

    def set_dynamics_regularization_prior_expected_value(self, mu):
        mu = np.asarray(mu, dtype=float).reshape(-1)
        if mu.size == 1:
            mu = np.full(self.graph.n_dynamic_variables, mu.item())
        if mu.size != self.graph.n_dynamic_variables:
            raise ConfigurationError(
                f"Prior expected value has {mu.size} elements, "
                f"expected {self.graph.n_dynamic_variables}"
            )
        self.mu_d = mu

    def set_dynamics_regularization_prior_covariance(self, covariance):
        self.sigma_d = self._diagonal(covariance, self.graph.n_dynamic_variables,
                                      "Prior dynamic variables covariance")

    def set_dynamics_constraints_prior_covariance(self, covariance):
        self.sigma_D = self._diagonal(covariance, self.graph.n_dynamic_equations,
                                      "Dynamics constraints covariance")

    def set_measurements_prior_covariance(self, covariance):
        self.sigma_y = self._diagonal(covariance, self.graph.n_measurements,
                                      "Measurements covariance")

    def is_valid(self) -> bool:
        return self.sigma_d is not None and self.sigma_y is not None

    def update_estimate_information(self, measurements: np.ndarray):
        """Refresh the graph from the model state and store the measurements"""
        self.graph.update()
        self.measurements = np.asarray(measurements, dtype=float).reshape(-1).copy()

    def do_estimate(self) -> bool:
        """
        Compute the posterior mean

        Returns:
            False if the solver is not configured or the solution is not finite
        """
        if not self.is_valid():
            logger.error("[SparseMAPSolver.do_estimate] Priors are not set")
            return False

        graph = self.graph
        W_y = sparse.diags(1.0 / self.sigma_y)
        H = sparse.diags(1.0 / self.sigma_d) + graph.Y.T @ W_y @ graph.Y
        g = self.mu_d / self.sigma_d + graph.Y.T @ (W_y @ (self.measurements - graph.b_Y))

        if graph.n_dynamic_equations > 0:
            W_D = sparse.diags(1.0 / self.sigma_D)
            H = H + graph.D.T @ W_D @ graph.D
            g = g - graph.D.T @ (W_D @ graph.b_D)

        with warnings.catch_warnings():
            warnings.simplefilter("error", MatrixRankWarning)
            try:
                d = spsolve(sparse.csc_matrix(H), np.asarray(g).reshape(-1))
            except (MatrixRankWarning, RuntimeError, ValueError) as e:
                logger.error(f"[SparseMAPSolver.do_estimate] Sparse solve failed: {e}")
                return False

        d = np.atleast_1d(d)
        if not np.all(np.isfinite(d)):
            logger.error("[SparseMAPSolver.do_estimate] Non-finite estimate")
            return False

        self._estimate = d
        return True

    def get_last_estimate(self) -> np.ndarray:
        return self._estimate.copy()
