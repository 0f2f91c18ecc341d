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

import numpy as np
import pytest

from qtomo.operator_utils import (QI, QX, QY, QZ, GS, ES, DimensionMismatchError,
                                  InvalidArgumentError, UnsupportedConfigurationError,
                                  choi_from_kraus, pauli_effects, to_realimag)
from qtomo.tomography import (_SDP_SOLVER, TomographyBase, TomographySettings,
                              DEFAULT_SOLVER_KWARGS, SOLVER, SOLVED, INFEASIBLE, GLS,
                              build_state_predictor, build_process_predictor,
                              check_observations, linear_inversion, realimag_variable, solve)
from qtomo.utils import import_cvxpy, import_qutip, vec

qt = import_qutip()
cvxpy = import_cvxpy()

if not qt:
    pytest.skip("Qutip not installed, skipping tests", allow_module_level=True)

if not cvxpy:
    pytest.skip("CVXPY not installed, skipping tests", allow_module_level=True)

SETTINGS = TomographySettings(constraints=frozenset(), solver=SOLVER,
                              solver_kwargs=DEFAULT_SOLVER_KWARGS)
RHO = (QI + .3 * QX - .2 * QY + .5 * QZ) / 2.
HADAMARD = np.array([[1, 1], [1, -1]]) / np.sqrt(2)
PREPARATIONS = [GS, ES, np.array([[.5, .5], [.5, .5]]), np.array([[.5, -.5j], [.5j, .5]])]


def test_SDP_SOLVER():
    assert _SDP_SOLVER.is_functional()


def test_build_state_predictor():
    ops = [QI, QX, QY, QZ]
    predictor = build_state_predictor(ops)
    assert predictor.shape == (4, 4)
    assert np.allclose(predictor.dot(vec(RHO)), [np.trace(op.dot(RHO)) for op in ops])

    qobj_predictor = build_state_predictor([qt.qeye(2), qt.sigmax(), qt.sigmay(), qt.sigmaz()])
    assert np.allclose(qobj_predictor, predictor)

    # informationally incomplete two qubit measurement
    assert build_state_predictor(pauli_effects(2)[:7]).shape == (7, 16)

    for bad in [[], [QX, np.eye(3)], [np.ones((2, 3))]]:
        with pytest.raises(DimensionMismatchError):
            build_state_predictor(bad)


def test_build_process_predictor():
    ops = pauli_effects(1)
    predictor = build_process_predictor(ops, PREPARATIONS)
    assert predictor.shape == (len(ops) * len(PREPARATIONS), 16)

    choi = choi_from_kraus([HADAMARD])
    expected = [np.trace(op.dot(HADAMARD).dot(prep).dot(HADAMARD.conj().T))
                for prep in PREPARATIONS for op in ops]
    assert np.allclose(predictor.dot(vec(choi)), expected)

    with pytest.raises(DimensionMismatchError):
        build_process_predictor(ops, [np.eye(3) / 3])


def test_check_observations():
    means, variances = check_observations(3, [1, 2, 3])
    assert np.allclose(means, [1, 2, 3])
    assert np.allclose(variances, np.ones(3))

    with pytest.raises(DimensionMismatchError):
        check_observations(3, [1, 2])
    with pytest.raises(DimensionMismatchError):
        check_observations(3, [1, 2, 3], [1, 1])
    with pytest.raises(InvalidArgumentError):
        check_observations(3, [1, 2, 3], [1, 0, 1])


def test_linear_inversion():
    predictor = build_state_predictor([QI, QX, QY, QZ])
    means = np.real(predictor.dot(vec(RHO)))
    x, residual = linear_inversion(predictor, means)
    assert np.allclose(x, vec(RHO))
    assert residual < 1e-12

    x, _ = linear_inversion(predictor, means, [1., .1, .2, .3], algorithm=GLS)
    assert np.allclose(x, vec(RHO))

    with pytest.raises(UnsupportedConfigurationError):
        linear_inversion(predictor, means, algorithm='WLS')
    with pytest.raises(InvalidArgumentError):
        linear_inversion(predictor, means, algorithm=GLS)
    with pytest.raises(InvalidArgumentError):
        linear_inversion(predictor, means, [1., -1., 1., 1.], algorithm=GLS)


def test_realimag_variable():
    z = QX + QY + 2 * QI
    block, z_r, z_i, structure = realimag_variable(2)
    prob = cvxpy.Problem(cvxpy.Minimize(0), structure + [z_r == z.real, z_i == z.imag])
    assert solve(prob, SETTINGS) in SOLVED
    assert np.allclose(block.value, to_realimag(z).toarray(), atol=1e-4)


def test_solve_reports_infeasible():
    x = cvxpy.Variable()
    prob = cvxpy.Problem(cvxpy.Minimize(x), [x >= 1, x <= 0])
    assert solve(prob, SETTINGS) == INFEASIBLE


def test_predictor_is_immutable():
    tomo = TomographyBase(build_state_predictor([QX, QY, QZ]))
    assert tomo.num_outcomes == 3
    with pytest.raises(ValueError):
        tomo.predictor[0, 0] = 1.
    assert np.allclose(tomo.predict(RHO), [.3, -.2, .5])
    with pytest.raises(DimensionMismatchError):
        tomo.predict(np.eye(3))
