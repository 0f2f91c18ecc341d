##############################################################################
# Copyright 2017-2018 Rigetti Computing
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
##############################################################################

"""
Module for quantum state and process tomography.

Quantum state and process tomography are algorithms that take as input the measured statistics of
many copies of a quantum state or process, and output an estimate of what that state or process is.
This module holds the machinery shared by the state and process estimators: the linear predictors
that map a vectorized density (or Choi) matrix to predicted measurement outcomes, the settings
passed to the convex solver and the real valued reparametrization of complex matrix variables.
"""

import logging
from collections import namedtuple

import numpy as np

import qtomo.operator_utils as o_ut
import qtomo.utils as ut
from qtomo.operator_utils import (DimensionMismatchError, InvalidArgumentError,
                                  UnsupportedConfigurationError)
from qtomo.utils import to_array, vec

_log = logging.getLogger(__name__)

cvxpy = ut.import_cvxpy()

SEED = 137
SOLVER = "SCS"

OPTIMAL = "Optimal"
OPTIMAL_INACCURATE = "OptimalInaccurate"
INFEASIBLE = "Infeasible"
UNBOUNDED = "Unbounded"
MAXITER = "MaxIter"
SOLVER_ERROR = "SolverError"

# Statuses for which the returned estimate can be used.
SOLVED = frozenset([OPTIMAL, OPTIMAL_INACCURATE])

if cvxpy:
    _CVXPY_STATUSES = {
        cvxpy.OPTIMAL: OPTIMAL,
        cvxpy.OPTIMAL_INACCURATE: OPTIMAL_INACCURATE,
        cvxpy.INFEASIBLE: INFEASIBLE,
        cvxpy.INFEASIBLE_INACCURATE: INFEASIBLE,
        cvxpy.UNBOUNDED: UNBOUNDED,
        cvxpy.UNBOUNDED_INACCURATE: UNBOUNDED,
        cvxpy.USER_LIMIT: MAXITER,
        cvxpy.SOLVER_ERROR: SOLVER_ERROR,
    }
else:  # pragma no coverage
    _CVXPY_STATUSES = {}

OLS = 'OLS'
GLS = 'GLS'
LEAST_SQUARES_ALGORITHMS = (OLS, GLS)


class _SDP_SOLVER(object):
    """
    Helper object that allows to test whether a working convex solver with SDP capabilities is
    installed. Not all solvers supported by cvxpy support positivity constraints. Examples of ones
    that do are CVXOPT and SCS.

    Usage:
        if _SDP_SOLVER.is_functional():
            # code to solve SDP
    """
    _functional = False
    _tested = False

    @classmethod
    def is_functional(cls):
        """
        Checks lazily whether a convex solver is installed that handles positivity constraints.

        :return: True if a solver supporting positivity constraints is installed.
        :rtype: bool
        """
        if not cls._tested:
            cls._tested = True
            rs = np.random.RandomState(SEED)
            test_problem_dimension = 10
            mat = rs.randn(test_problem_dimension, test_problem_dimension)
            posmat = mat.dot(mat.T)
            posvar = cvxpy.Variable((test_problem_dimension, test_problem_dimension),
                                    symmetric=True)
            prob = cvxpy.Problem(cvxpy.Minimize((cvxpy.trace(posmat @ posvar)
                                                 + cvxpy.norm(posvar))),
                                 [posvar >> 0, cvxpy.trace(posvar) >= 1.])

            try:
                prob.solve(SOLVER)
                cls._functional = True
            except cvxpy.SolverError:  # pragma no coverage
                _log.warning("No convex SDP solver found. You will not be able to solve"
                             " tomography problems with matrix positivity constraints.")
        return cls._functional


TomographySettings = namedtuple('TomographySettings', ('constraints', 'solver', 'solver_kwargs'))
"""
Encapsulate the TomographySettings, i.e., the constraints to be applied to the constrained
estimators, the convex solver to use and the keyword arguments to be passed to it. A settings object
is passed explicitly to every fit, variations are created with ``settings._replace(...)``.

:param set constraints: The constraints to be applied:
For state tomography the maximal constraints are `{'positive', 'unit_trace'}`.
For process tomography the maximal constraints are `{'cpositive', 'trace_preserving'}`.
:param str solver: The name of the cvxpy solver.
:param dict solver_kwargs: Keyword arguments to be passed to the convex solver.
"""


DEFAULT_SOLVER_KWARGS = dict(verbose=False, max_iters=20000, eps_abs=1e-8, eps_rel=1e-8)


TomographyResult = namedtuple('TomographyResult', ('estimate', 'objective', 'status'))
"""
The result of fitting tomographic data.

:param numpy.ndarray estimate: The reconstructed density or Choi matrix (None if the solver failed).
:param float objective: The objective value at the estimate: residual norm for least squares
    estimators, log-likelihood for maximum likelihood estimators.
:param str status: One of the status constants, e.g., ``OPTIMAL`` or ``MAXITER``.
"""


def build_state_predictor(operators):
    """
    Build the predictor matrix for state tomography. The row for an operator ``O`` is
    ``vec(O^T)`` such that ``predictor.dot(vec(rho))`` gives the expectation values
    ``Tr[O rho]``.

    :param list operators: The measurement operators, all of the same dimension ``d``.
    :return: The ``(len(operators), d**2)`` predictor matrix.
    :rtype: numpy.ndarray
    """
    ops, _ = o_ut.operator_dimension(operators)
    return np.vstack([vec(op.T) for op in ops])


def build_process_predictor(operators, preparations):
    """
    Build the predictor matrix for process tomography acting on Choi matrices, see
    :py:func:`qtomo.operator_utils.choi_from_kraus`. The row for a measurement operator ``O``
    and an input state ``P`` is ``vec(P (x) O^T)`` such that its inner product with ``vec(J)``
    is ``Tr[J (P^T (x) O)] = Tr[O E(P)]``.

    The rows enumerate the pairs ``(O, P)`` with the operator index varying fastest.

    :param list operators: The measurement operators.
    :param list preparations: The input states.
    :return: The ``(len(operators) * len(preparations), d**4)`` predictor matrix.
    :rtype: numpy.ndarray
    """
    ops, dim = o_ut.operator_dimension(operators)
    preps, prep_dim = o_ut.operator_dimension(preparations)
    if prep_dim != dim:
        raise DimensionMismatchError("Operators have dimension {} but preparations {}".format(
            dim, prep_dim))
    return np.vstack([vec(np.kron(prep, op.T)) for prep in preps for op in ops])


def check_observations(num_outcomes, means, variances=None):
    """
    Validate measured means and variances against the number of predicted outcomes.

    :param int num_outcomes: The number of rows of the predictor.
    :param list means: The measured means.
    :param list variances: (Optional) The variances of the means. If None, unit variances are
        assumed.
    :return: The means and variances as float arrays.
    :rtype: tuple
    """
    means = np.asarray(means, dtype=float).ravel()
    if len(means) != num_outcomes:
        raise DimensionMismatchError("Expected {} means, got {}".format(num_outcomes, len(means)))
    if variances is None:
        return means, np.ones(num_outcomes)
    variances = np.asarray(variances, dtype=float).ravel()
    if len(variances) != num_outcomes:
        raise DimensionMismatchError("Expected {} variances, got {}".format(
            num_outcomes, len(variances)))
    if not np.all(variances > 0):
        raise InvalidArgumentError("All variances need to be strictly positive.")
    return means, variances


def linear_inversion(predictor, means, variances=None, algorithm=OLS):
    """
    Solve ``predictor.dot(x) ~ means`` in the least squares sense. With ``algorithm=GLS`` the
    residuals are weighted by ``1/sqrt(variances)``.

    :param numpy.ndarray predictor: The predictor matrix.
    :param list means: The measured means.
    :param list variances: The variances, required for ``GLS``.
    :param str algorithm: Either ``OLS`` or ``GLS``.
    :return: The solution vector and the residual norm divided by the number of means.
    :rtype: tuple
    """
    if algorithm not in LEAST_SQUARES_ALGORITHMS:
        raise UnsupportedConfigurationError(
            "Unrecognized method for least squares tomography: {}".format(algorithm))
    if algorithm == GLS and variances is None:
        raise InvalidArgumentError("Generalized least squares requires variances.")
    means, variances = check_observations(predictor.shape[0], means,
                                          variances if algorithm == GLS else None)
    weights = 1. / np.sqrt(variances)
    x, _, rank, _ = np.linalg.lstsq(predictor * weights[:, np.newaxis], means * weights,
                                    rcond=None)
    if rank < predictor.shape[1]:
        _log.debug("Predictor has rank %d < %d, returning minimum norm solution",
                   rank, predictor.shape[1])
    residual = np.linalg.norm(predictor.dot(x) - means) / len(means)
    return x, residual


def realimag_variable(dim):
    """
    Create the real valued doubled up matrix variable ``R(Z)`` standing in for a complex hermitian
    ``(dim, dim)`` variable ``Z = Z_r + 1j * Z_i``, see
    :py:func:`qtomo.operator_utils.to_realimag`::

        R(Z) = [ Z_r  -Z_i]
               [ Z_i   Z_r]

    cvxpy does not handle complex positivity constraints well, ``R(Z) >> 0`` is equivalent to
    ``Z >> 0``. Use :py:func:`qtomo.operator_utils.from_realimag` on the block value to map back.

    :param int dim: The dimension of ``Z``.
    :return: The block variable, expressions for ``Z_r`` and ``Z_i`` and the list of equality
        constraints that enforce the block structure.
    :rtype: tuple
    """
    block = cvxpy.Variable((2 * dim, 2 * dim), symmetric=True)
    z_r = block[:dim, :dim]
    z_i = block[dim:, :dim]
    # the block is symmetric, so this also makes Z_i anti-symmetric
    structure = [block[dim:, dim:] == z_r,
                 block[:dim, dim:] == -z_i]
    return block, z_r, z_i, structure


def flatten(expression):
    """
    Column-stack a cvxpy matrix expression consistently with :py:func:`qtomo.utils.vec`.
    """
    rows, cols = expression.shape
    return cvxpy.reshape(expression, (rows * cols,), order='F')


def real_predictions(predictor, z_r, z_i):
    """
    Compute the real part of ``predictor.dot(vec(Z_r + 1j * Z_i))`` as a cvxpy expression.

    :param numpy.ndarray predictor: The (complex) predictor matrix.
    :param Expression z_r: The real part of the matrix variable.
    :param Expression z_i: The imaginary part of the matrix variable.
    :return: The predicted outcomes.
    :rtype: cvxpy.Expression
    """
    rpred = np.hstack([predictor.real, -predictor.imag])
    return rpred @ cvxpy.hstack([flatten(z_r), flatten(z_i)])


def solve(problem, settings):
    """
    Solve a convex problem with the solver configured in ``settings`` and translate the solver
    status. A non-optimal status is logged but returned, not raised.

    :param cvxpy.Problem problem: The problem.
    :param TomographySettings settings: The solver and its keyword arguments.
    :return: The translated status.
    :rtype: str
    """
    _log.info("Starting convex solver")
    try:
        problem.solve(solver=settings.solver, **settings.solver_kwargs)
    except cvxpy.SolverError as e:
        _log.error("Convex solver %s failed: %s", settings.solver, e)
        return SOLVER_ERROR
    status = _CVXPY_STATUSES.get(problem.status, SOLVER_ERROR)
    if status != OPTIMAL:
        _log.warning("Problem did not converge to optimal solution (status %s). "
                     "Solver settings: %s", problem.status, settings.solver_kwargs)
    return status


def positivity_available(constraints, name):
    """
    Check whether a positivity constraint was requested and can be handled by the installed solvers.

    :param set constraints: The requested constraints.
    :param str name: The name of the positivity constraint.
    :return: True if the positivity constraint should be added.
    :rtype: bool
    """
    if name not in constraints:
        return False
    if _SDP_SOLVER.is_functional():
        return True
    else:  # pragma no coverage
        _log.warning("No convex solver capable of semi-definite problems installed.\n"
                     "Dropping the positivity constraint.")
        return False


def block_value(block):
    """
    Map the value of a solved doubled up variable back to a complex matrix.

    :param cvxpy.Variable block: The solved block variable.
    :return: The complex matrix, or None if the variable has no value.
    :rtype: Optional[numpy.ndarray]
    """
    if block.value is None:
        return None
    return o_ut.from_realimag(block.value)


class TomographyBase(object):
    """
    Common base of the estimators. An estimator owns an immutable predictor matrix, predicts
    outcomes for a given density or Choi matrix and fits measured data.
    """

    def __init__(self, predictor):
        predictor = np.array(predictor, dtype=complex)
        predictor.flags.writeable = False
        self.predictor = predictor

    @property
    def num_outcomes(self):
        """
        The number of outcomes predicted, i.e., the number of means expected by ``fit``.
        """
        return self.predictor.shape[0]

    def predict(self, matrix):
        """
        Predict the measured expectation values for a density or Choi matrix.

        :param (numpy.ndarray|qutip.Qobj) matrix: The density or Choi matrix.
        :return: The predicted expectation values.
        :rtype: numpy.ndarray
        """
        matrix = to_array(matrix)
        if matrix.size != self.predictor.shape[1]:
            raise DimensionMismatchError("Expected a matrix with {} entries, got shape {}".format(
                self.predictor.shape[1], matrix.shape))
        return np.real_if_close(self.predictor.dot(vec(matrix)))

    def fit(self, *args, **kwargs):  # pragma no coverage
        raise NotImplementedError()
