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

import qtomo.operator_utils as o_ut
import qtomo.utils as ut
from qtomo import tomography
from qtomo.operator_utils import DimensionMismatchError
from qtomo.tomography import (TomographyBase, TomographyResult, TomographySettings,
                              DEFAULT_SOLVER_KWARGS, OLS, OPTIMAL)

_log = logging.getLogger(__name__)

cvxpy = ut.import_cvxpy()


TRACE_PRESERVING = 'trace_preserving'
COMPLETELY_POSITIVE = 'cpositive'
DEFAULT_PROCESS_TOMO_SETTINGS = TomographySettings(
    constraints=frozenset([TRACE_PRESERVING, COMPLETELY_POSITIVE]),
    solver=tomography.SOLVER,
    solver_kwargs=DEFAULT_SOLVER_KWARGS
)


def _process_dimension(predictor):
    """
    The Hilbert space dimension ``d`` of a process predictor with ``d**4`` columns.
    """
    dim = ut.integer_root(predictor.shape[1], 4)
    if dim is None:
        raise DimensionMismatchError("Predictor with {} columns does not act on a Choi "
                                     "matrix".format(predictor.shape[1]))
    return dim


def qpt_lsq(predictor, means, variances=None, algorithm=OLS):
    """
    Estimate a Choi matrix by unconstrained linear inversion of the process predictor. The result
    need not be completely positive nor trace preserving.

    :param numpy.ndarray predictor: The process predictor, see
        :py:func:`qtomo.tomography.build_process_predictor`.
    :param list means: The measured expectation values.
    :param list variances: The variances of the means, required for ``algorithm=GLS``.
    :param str algorithm: Ordinary (``OLS``) or generalized (``GLS``) least squares.
    :return: The estimated Choi matrix, the residual norm per mean and the status.
    :rtype: TomographyResult
    """
    dim = _process_dimension(predictor)
    x, residual = tomography.linear_inversion(predictor, means, variances, algorithm)
    return TomographyResult(ut.unvec(x, (dim ** 2, dim ** 2)), residual, OPTIMAL)


# For QPT, we write the predictor as operating on Choi matrices. This is a bit awkward in comparison
# to using the Liouville representation, but complete positivity is a plain positivity constraint
# and trace preservation a linear one.
def qpt_ml(predictor, means, variances=None, settings=DEFAULT_PROCESS_TOMO_SETTINGS):
    """
    Estimate a Choi matrix by minimizing the squared variance weighted distance
    ``sum_i (m_i - p_i)**2 / var_i`` of predicted and measured means, subject to complete
    positivity and trace preservation as selected in ``settings``.
    For Gaussian distributed means this is the maximum likelihood estimate.

    :param numpy.ndarray predictor: The process predictor.
    :param list means: The measured expectation values.
    :param list variances: (Optional) The variances of the means, unit variances by default.
    :param TomographySettings settings: The constraints and solver settings.
    :return: The estimated Choi matrix, the squared weighted residual and the solver status.
    :rtype: TomographyResult
    """
    means, variances = tomography.check_observations(predictor.shape[0], means, variances)
    dim = _process_dimension(predictor)
    ivars = 1. / np.sqrt(variances)

    block, choi_r, choi_i, constraints = tomography.realimag_variable(dim ** 2)
    predictions = tomography.real_predictions(predictor, choi_r, choi_i)
    obj = cvxpy.sum_squares(cvxpy.multiply(means - predictions, ivars))

    if tomography.positivity_available(settings.constraints, COMPLETELY_POSITIVE):
        constraints.append(block >> 0)
    if TRACE_PRESERVING in settings.constraints:
        ptrb = cvxpy.Constant(o_ut.trb_sop(dim, dim))
        constraints.append(cvxpy.trace(choi_i) == 0)
        constraints.append(ptrb @ tomography.flatten(choi_r) == ut.vec(np.eye(dim)))
        constraints.append(ptrb @ tomography.flatten(choi_i) == np.zeros(dim ** 2))

    prob = cvxpy.Problem(cvxpy.Minimize(obj), constraints)
    status = tomography.solve(prob, settings)
    return TomographyResult(tomography.block_value(block), prob.value, status)


class FreeLSProcessTomo(TomographyBase):
    """
    Process tomography by unconstrained (ordinary or generalized) least squares.
    """

    def __init__(self, operators, preparations):
        """
        :param list operators: The measured operators.
        :param list preparations: The prepared input states.
        """
        super().__init__(tomography.build_process_predictor(operators, preparations))

    def fit(self, means, variances=None, algorithm=OLS):
        """
        Fit measured means, see :py:func:`qpt_lsq`.

        :rtype: TomographyResult
        """
        return qpt_lsq(self.predictor, means, variances, algorithm)


class MLProcessTomo(TomographyBase):
    """
    Process tomography restricted to completely positive, trace preserving maps. The means of
    every (measurement operator, input state) pair are fitted in the order of
    :py:func:`qtomo.tomography.build_process_predictor`.
    """

    def __init__(self, operators, preparations):
        """
        :param list operators: The measured operators.
        :param list preparations: The prepared input states.
        """
        super().__init__(tomography.build_process_predictor(operators, preparations))

    def fit(self, means, variances=None, settings=DEFAULT_PROCESS_TOMO_SETTINGS):
        """
        Fit measured means, see :py:func:`qpt_ml`.

        :rtype: TomographyResult
        """
        return qpt_ml(self.predictor, means, variances, settings)


def process_tomography(operators, preparations, means, variances=None,
                       settings=DEFAULT_PROCESS_TOMO_SETTINGS):
    """
    Estimate a quantum process from the means of measuring ``operators`` on the output of the
    process for each of the input states ``preparations``.

    :param list operators: The measured operators.
    :param list preparations: The prepared input states.
    :param list means: The measured means, the operator index varying fastest.
    :param list variances: (Optional) The variances of the means.
    :param TomographySettings settings: The constraints and solver settings.
    :return: The estimated Choi matrix, the squared weighted residual and the solver status.
    :rtype: TomographyResult
    """
    return MLProcessTomo(operators, preparations).fit(means, variances, settings)
