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

import logging

import numpy as np
from scipy.linalg import eigh

import qtomo.operator_utils as o_ut
import qtomo.utils as ut
from qtomo import tomography
from qtomo.operator_utils import (DimensionMismatchError, InvalidArgumentError,
                                  UnsupportedConfigurationError)
from qtomo.tomography import (TomographyBase, TomographyResult, TomographySettings,
                              DEFAULT_SOLVER_KWARGS, OLS, OPTIMAL, MAXITER)

_log = logging.getLogger(__name__)

cvxpy = ut.import_cvxpy()


UNIT_TRACE = 'unit_trace'
POSITIVE = 'positive'
DEFAULT_STATE_TOMO_SETTINGS = TomographySettings(
    constraints=frozenset([UNIT_TRACE, POSITIVE]),
    solver=tomography.SOLVER,
    solver_kwargs=DEFAULT_SOLVER_KWARGS
)

# convex maximum likelihood formulations
DIRECT_LOG = 'direct_log'
AUXILIARY_PROBS = 'auxiliary_probs'

DEFAULT_DILUTION = .005
DEFAULT_TOL = 1e-9
DEFAULT_MAXITER = 100000


def _state_dimension(predictor):
    dim = ut.integer_root(predictor.shape[1])
    if dim is None:
        raise DimensionMismatchError("Predictor with {} columns does not act on a square "
                                     "matrix".format(predictor.shape[1]))
    return dim


def qst_lsq(predictor, means, variances=None, algorithm=OLS):
    """
    Estimate a density matrix by unconstrained linear inversion of the predictor. The result need
    not be positive nor have unit trace; include the identity among the measured operators to fix
    the trace.

    :param numpy.ndarray predictor: The state predictor, see
        :py:func:`qtomo.tomography.build_state_predictor`.
    :param list means: The measured expectation values.
    :param list variances: The variances of the means, required for ``algorithm=GLS``.
    :param str algorithm: Ordinary (``OLS``) or generalized (``GLS``) least squares.
    :return: The estimate, the residual norm per mean and the status.
    :rtype: TomographyResult
    """
    dim = _state_dimension(predictor)
    x, residual = tomography.linear_inversion(predictor, means, variances, algorithm)
    return TomographyResult(ut.unvec(x, (dim, dim)), residual, OPTIMAL)


def qst_ml(predictor, means, variances=None, settings=DEFAULT_STATE_TOMO_SETTINGS):
    """
    Estimate a density matrix by minimizing the squared variance weighted distance
    ``sum_i (m_i - Tr[O_i rho])**2 / var_i`` of predicted and measured means, subject to the
    physicality constraints in ``settings``. For Gaussian distributed means this is the maximum
    likelihood estimate.

    :param numpy.ndarray predictor: The state predictor.
    :param list means: The measured expectation values.
    :param list variances: (Optional) The variances of the means, unit variances by default.
    :param TomographySettings settings: The constraints and solver settings.
    :return: The estimate, the squared weighted residual and the solver status.
    :rtype: TomographyResult
    """
    means, variances = tomography.check_observations(predictor.shape[0], means, variances)
    dim = _state_dimension(predictor)
    ivars = 1. / np.sqrt(variances)

    block, rho_r, rho_i, constraints = tomography.realimag_variable(dim)
    predictions = tomography.real_predictions(predictor, rho_r, rho_i)
    obj = cvxpy.sum_squares(cvxpy.multiply(means - predictions, ivars))

    if UNIT_TRACE in settings.constraints:
        constraints.append(cvxpy.trace(rho_r) == 1)
        constraints.append(cvxpy.trace(rho_i) == 0)
    if tomography.positivity_available(settings.constraints, POSITIVE):
        constraints.append(block >> 0)

    prob = cvxpy.Problem(cvxpy.Minimize(obj), constraints)
    status = tomography.solve(prob, settings)
    return TomographyResult(tomography.block_value(block), prob.value, status)


class FreeLSStateTomo(TomographyBase):
    """
    State tomography by unconstrained (ordinary or generalized) least squares.
    """

    def __init__(self, operators):
        """
        :param list operators: The measured operators, e.g., Pauli observables or POVM effects.
        """
        super().__init__(tomography.build_state_predictor(operators))

    def fit(self, means, variances=None, algorithm=OLS):
        """
        Fit measured means, see :py:func:`qst_lsq`.

        :rtype: TomographyResult
        """
        return qst_lsq(self.predictor, means, variances, algorithm)


class LSStateTomo(TomographyBase):
    """
    State tomography by least squares restricted to positive semi-definite unit trace matrices.
    """

    def __init__(self, operators):
        """
        :param list operators: The measured operators.
        """
        super().__init__(tomography.build_state_predictor(operators))

    def fit(self, means, variances=None, settings=DEFAULT_STATE_TOMO_SETTINGS):
        """
        Fit measured means, see :py:func:`qst_ml`.

        :rtype: TomographyResult
        """
        return qst_ml(self.predictor, means, variances, settings)


class MLStateTomo(TomographyBase):
    """
    Maximum likelihood state tomography from observed frequencies of POVM effects. The likelihood
    is maximized either with the diluted iterative algorithm (``fit``), which needs no convex
    solver and is the recommended method, or by solving a convex program (``fit_convex``), which
    is slower and less reliable.
    """

    def __init__(self, effects, beta=0.):
        """
        :param list effects: The POVM effects, hermitian positive semi-definite operators with trace
            at most one.
        :param float beta: The hedging parameter used by ``fit_convex``, must be non-negative.
        """
        effects, dim = o_ut.operator_dimension(effects)
        for effect in effects:
            o_ut.check_povm_effect(effect)
        if beta < 0:
            raise InvalidArgumentError("The hedging parameter must be non-negative.")
        super().__init__(tomography.build_state_predictor(effects))
        effects = np.array(effects)
        effects.flags.writeable = False
        self.effects = effects
        self.dim = dim
        self.beta = float(beta)

    def _check_frequencies(self, freqs):
        freqs = np.asarray(freqs, dtype=float).ravel()
        if len(freqs) != self.num_outcomes:
            raise DimensionMismatchError("Expected {} frequencies, got {}".format(
                self.num_outcomes, len(freqs)))
        if np.any(freqs < 0):
            raise InvalidArgumentError("Frequencies must be non-negative.")
        if not freqs.sum() > 0:
            raise InvalidArgumentError("At least one frequency must be positive.")
        return freqs

    def _probabilities(self, rho):
        return np.real(self.predictor.dot(ut.vec(rho)))

    def log_likelihood(self, rho, freqs):
        """
        The log-likelihood ``sum_i f_i log(Tr[rho E_i])`` of a state given observed frequencies.
        Outcomes that were never observed do not contribute. A state that assigns zero
        probability to an observed outcome has log-likelihood ``-inf``, which is logged.

        :param numpy.ndarray rho: The density matrix.
        :param list freqs: The observed frequencies (or counts) of the effects.
        :return: The log-likelihood.
        :rtype: float
        """
        freqs = self._check_frequencies(freqs)
        probs = self._probabilities(ut.to_array(rho))
        observed = freqs > 0
        if np.any(probs[observed] <= 0):
            _log.warning("State assigns zero probability to %d observed outcome(s)",
                         np.count_nonzero(probs[observed] <= 0))
            return -np.inf
        return float(np.sum(freqs[observed] * np.log(probs[observed])))

    def _r_operator(self, rho, freqs):
        """
        R(rho) = sum_j (f_j/Pr_j) E_j for normalized frequencies f_j, the fixed point condition of
        the likelihood is R(rho) rho = rho.
        """
        # this small number ~ 10^-308 is added so that we don't get divide by zero errors
        machine_tiny = np.finfo(float).tiny
        probs = self._probabilities(rho)
        return np.tensordot(freqs / (probs + machine_tiny), self.effects, axes=1)

    def fit(self, freqs, dilution=DEFAULT_DILUTION, entropy_penalty=0., tol=DEFAULT_TOL,
            maxiter=DEFAULT_MAXITER, rho0=None):
        """
        Estimate the state with the diluted iterative algorithm of

            [DIMLE1]    Diluted maximum-likelihood algorithm for quantum tomography
                        Řeháček et al., PRA 75, 042108 (2007)
                        https://doi.org/10.1103/PhysRevA.75.042108

        Each iteration updates ``rho -> U rho U / Tr[U rho U]`` with
        ``U = (I + epsilon * R(rho)) / (1 + epsilon)`` and ``epsilon = 1 / dilution``.
        The likelihood increases in every step for a sufficiently large dilution.

        ``R(rho)`` is diluted once. A two stage update that first forms
        ``T = (I + epsilon * R) / (1 + epsilon)`` and then uses
        ``(I + epsilon * T) / (1 + epsilon)`` dilutes twice. Up to a scalar that cancels in the
        normalization it equals the update here with ``epsilon**2 / (1 + 2 * epsilon)`` in place
        of ``epsilon``, i.e., with ``dilution = (1 + 2 * epsilon) / epsilon**2``.

        An optional entropy penalty adds ``-entropy_penalty * (log(rho) - Tr[rho log(rho)])`` to
        ``R(rho)``, following

            [DIMLE2]    Quantum-State Reconstruction by Maximizing Likelihood and Entropy
                        Teo et al., PRL 107, 020404 (2011)
                        https://doi.org/10.1103/PhysRevLett.107.020404

        This option is experimental, the default ``entropy_penalty=0`` is the plain MLE.

        :param list freqs: The observed frequencies (or counts) of the effects.
        :param float dilution: The dilution ``delta = 1 / epsilon``, must be positive.
        :param float entropy_penalty: The entropy penalty parameter, must be non-negative.
        :param float tol: The algorithm stops once the Frobenius norm of the change of the estimate
            divided by ``d**2`` is below ``tol``.
        :param int maxiter: The maximum number of iterations.
        :param numpy.ndarray rho0: (Optional) The initial estimate, a positive definite matrix.
            The maximally mixed state by default.
        :return: The estimate, its log-likelihood and ``OPTIMAL`` or ``MAXITER``.
        :rtype: TomographyResult
        """
        freqs = self._check_frequencies(freqs)
        if not dilution > 0:
            raise InvalidArgumentError("The dilution must be positive.")
        if entropy_penalty < 0:
            raise InvalidArgumentError("The entropy penalty must be non-negative.")
        if maxiter < 1:
            raise InvalidArgumentError("Need at least one iteration.")
        dim = self.dim
        identity = np.eye(dim, dtype=complex)
        if rho0 is None:
            rho = identity / dim
        else:
            rho = ut.to_array(rho0)
            if rho.shape != (dim, dim):
                raise DimensionMismatchError("Initial state has shape {}, expected ({}, {})".format(
                    rho.shape, dim, dim))
            # the update never grows the support of rho, a rank deficient seed can get stuck
            if not o_ut.is_hermitian(rho) or not np.linalg.eigvalsh(rho).min() > 0:
                raise InvalidArgumentError("Initial state must be positive definite.")
            rho = rho / np.trace(rho).real

        normalized_freqs = freqs / freqs.sum()
        epsilon = 1. / dilution
        status = MAXITER
        iteration = 0
        while iteration < maxiter:
            iteration += 1
            rho_previous = rho
            t_k = self._r_operator(rho, normalized_freqs)
            if entropy_penalty > 0.:
                log_rho = _hermitian_logm(rho)
                t_k = t_k - entropy_penalty * (log_rho
                                               - np.trace(rho.dot(log_rho)).real * identity)
            update_map = (identity + epsilon * t_k) / (1. + epsilon)
            rho = update_map.dot(rho).dot(update_map)
            rho = (rho + rho.conj().T) / 2.
            rho /= np.trace(rho).real
            if np.linalg.norm(rho - rho_previous) / dim ** 2 < tol:
                status = OPTIMAL
                break

        if status == MAXITER:
            _log.warning("Diluted MLE reached maxiter=%d before converging to tol=%g",
                         maxiter, tol)
        else:
            _log.debug("Diluted MLE converged after %d iterations", iteration)
        return TomographyResult(rho, self.log_likelihood(rho, freqs), status)

    def fit_convex(self, freqs, formulation=DIRECT_LOG, settings=DEFAULT_STATE_TOMO_SETTINGS):
        """
        Estimate the state by maximizing the log-likelihood ``sum_i f_i log(Tr[rho E_i])`` with a
        convex solver. If the estimator was created with ``beta > 0``, the hedging term
        ``beta * log(lambda_min(rho))`` is added, which keeps the estimate away from the boundary
        of the state space, see

            [HMLE]      Hedged Maximum Likelihood Quantum State Estimation
                        Blume-Kohout, PRL, 105, 200504 (2010)
                        https://doi.org/10.1103/PhysRevLett.105.200504

        Two equivalent formulations are available. ``DIRECT_LOG`` places the predicted
        probabilities inside the logarithm. ``AUXILIARY_PROBS`` introduces non-negative variables
        ``p_i == Tr[rho E_i]`` and maximizes ``sum_i f_i log(p_i)``, which sometimes helps the
        solver. Both are slower and less robust than :py:meth:`fit`.

        :param list freqs: The observed frequencies (or counts) of the effects.
        :param str formulation: ``DIRECT_LOG`` or ``AUXILIARY_PROBS``.
        :param TomographySettings settings: The constraints and solver settings.
        :return: The estimate, the maximized objective and the solver status.
        :rtype: TomographyResult
        """
        freqs = self._check_frequencies(freqs)
        if formulation not in _CONVEX_MLE_FORMULATIONS:
            raise UnsupportedConfigurationError(
                "Unrecognized convex MLE formulation: {}".format(formulation))

        block, rho_r, rho_i, constraints = tomography.realimag_variable(self.dim)
        probs = tomography.real_predictions(self.predictor, rho_r, rho_i)
        obj = _CONVEX_MLE_FORMULATIONS[formulation](freqs, probs, constraints)
        if self.beta > 0:
            obj = obj + self.beta * cvxpy.log(cvxpy.lambda_min(block))

        if UNIT_TRACE in settings.constraints:
            constraints.append(cvxpy.trace(rho_r) == 1)
            constraints.append(cvxpy.trace(rho_i) == 0)
        if tomography.positivity_available(settings.constraints, POSITIVE):
            constraints.append(block >> 0)

        prob = cvxpy.Problem(cvxpy.Maximize(obj), constraints)
        status = tomography.solve(prob, settings)
        return TomographyResult(tomography.block_value(block), prob.value, status)


def _direct_log_likelihood(freqs, probs, constraints):
    return freqs @ cvxpy.log(probs)


def _auxiliary_log_likelihood(freqs, probs, constraints):
    p = cvxpy.Variable(len(freqs), nonneg=True)
    constraints.append(p == probs)
    return freqs @ cvxpy.log(p)


_CONVEX_MLE_FORMULATIONS = {
    DIRECT_LOG: _direct_log_likelihood,
    AUXILIARY_PROBS: _auxiliary_log_likelihood,
}


def _hermitian_logm(rho):
    """
    Matrix logarithm of a positive semi-definite matrix via its eigen-decomposition, with
    eigenvalues clipped away from zero.
    """
    eigvals, eigvecs = eigh(rho)
    eigvals = np.clip(eigvals, np.finfo(float).tiny, None)
    return (eigvecs * np.log(eigvals)).dot(eigvecs.conj().T)
