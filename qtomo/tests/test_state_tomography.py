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
                                  expectations_to_effects, fidelity, is_hermitian, pauli_effects)
from qtomo.state_tomography import (DEFAULT_STATE_TOMO_SETTINGS, UNIT_TRACE, DIRECT_LOG,
                                    AUXILIARY_PROBS, FreeLSStateTomo, LSStateTomo, MLStateTomo,
                                    qst_lsq, qst_ml)
from qtomo.tomography import GLS, OPTIMAL, MAXITER, SOLVED, build_state_predictor
from qtomo.utils import import_cvxpy, import_qutip

qt = import_qutip()
cvxpy = import_cvxpy()

if not qt:
    pytest.skip("Qutip not installed, skipping tests", allow_module_level=True)

if not cvxpy:
    pytest.skip("CVXPY not installed, skipping tests", allow_module_level=True)

SEED = 137
EPS = 1e-3
PAULI_OPS = [QI, QX, QY, QZ]
RHO = (QI + .3 * QX - .2 * QY + .5 * QZ) / 2.
# a Bloch vector outside of the unit ball
UNPHYSICAL_MEANS = [1., 0., 0., 1.5]


def assert_physical(rho, tol=EPS):
    assert is_hermitian(rho)
    assert np.isclose(np.trace(rho), 1., atol=tol)
    assert np.linalg.eigvalsh((rho + rho.conj().T) / 2.).min() > -tol


def test_free_ls_state_tomography():
    tomo = FreeLSStateTomo(PAULI_OPS)
    means = tomo.predict(RHO)
    rho_est, residual, status = tomo.fit(means)
    assert status == OPTIMAL
    assert residual < 1e-12
    assert np.allclose(rho_est, RHO)
    assert np.allclose(tomo.predict(rho_est), means)

    rho_gls, _, _ = tomo.fit(means, [1., .5, .2, .1], algorithm=GLS)
    assert np.allclose(rho_gls, RHO)

    # no physicality constraints are enforced
    rho_bad, _, _ = tomo.fit(UNPHYSICAL_MEANS)
    assert np.linalg.eigvalsh(rho_bad).min() < -.2


def test_free_ls_errors():
    tomo = FreeLSStateTomo([qt.qeye(2), qt.sigmax(), qt.sigmay(), qt.sigmaz()])
    means = tomo.predict(RHO)
    with pytest.raises(InvalidArgumentError):
        tomo.fit(means, [1., 1., -1., 1.], algorithm=GLS)
    with pytest.raises(DimensionMismatchError):
        tomo.fit(means[:3])
    with pytest.raises(UnsupportedConfigurationError):
        tomo.fit(means, algorithm='MLE')
    with pytest.raises(DimensionMismatchError):
        qst_lsq(np.ones((3, 3)), [1, 2, 3])


def test_ls_state_tomography():
    tomo = LSStateTomo(PAULI_OPS)
    means = tomo.predict(RHO)
    rho_est, objective, status = tomo.fit(means, np.ones(4))
    assert status in SOLVED
    assert objective < EPS
    assert np.allclose(rho_est, RHO, atol=EPS)
    assert_physical(rho_est)
    assert np.allclose(tomo.predict(rho_est), means, atol=EPS)


def test_ls_state_tomography_physical():
    tomo = LSStateTomo(PAULI_OPS)
    rho_est, objective, status = tomo.fit(UNPHYSICAL_MEANS)
    assert status in SOLVED
    assert_physical(rho_est)
    assert fidelity(rho_est, GS) > 1 - EPS
    # the objective is the squared residual, (1.5 - 1)**2 for the closest state |0><0|
    assert np.isclose(objective, .25, atol=1e-4)
    assert np.isclose(objective, np.sum((UNPHYSICAL_MEANS - tomo.predict(rho_est)) ** 2),
                      atol=1e-4)

    variances = [1., 1., 1., .5]
    _, objective, _ = tomo.fit(UNPHYSICAL_MEANS, variances)
    assert np.isclose(objective, .5, atol=1e-4)

    # the unit trace constraint fixes the trace without an identity measurement
    rho_est, _, status = qst_ml(build_state_predictor([QX, QY, QZ]), UNPHYSICAL_MEANS[1:])
    assert status in SOLVED
    assert_physical(rho_est)

    settings = DEFAULT_STATE_TOMO_SETTINGS._replace(constraints=frozenset([UNIT_TRACE]))
    rho_est, _, status = LSStateTomo(PAULI_OPS).fit(UNPHYSICAL_MEANS, settings=settings)
    assert status in SOLVED
    assert np.linalg.eigvalsh(rho_est).min() < -.2


def test_ls_state_tomography_errors():
    tomo = LSStateTomo(PAULI_OPS)
    with pytest.raises(DimensionMismatchError):
        tomo.fit([0., 0., 1.])
    with pytest.raises(DimensionMismatchError):
        tomo.fit([1., 0., 0., 1.], [1., 1.])
    with pytest.raises(InvalidArgumentError):
        tomo.fit([1., 0., 0., 1.], [1., 0., 1., 1.])


def test_ml_state_tomo_validation():
    for effects in [[QX], [np.array([[0, 1], [0, 0]])], [QI], [GS, -GS]]:
        with pytest.raises(InvalidArgumentError):
            MLStateTomo(effects)
    with pytest.raises(DimensionMismatchError):
        MLStateTomo([GS, np.eye(3) / 3])
    with pytest.raises(InvalidArgumentError):
        MLStateTomo(pauli_effects(1), beta=-1.)

    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO)
    with pytest.raises(DimensionMismatchError):
        tomo.fit(freqs[:5])
    with pytest.raises(InvalidArgumentError):
        tomo.fit(-freqs)
    with pytest.raises(InvalidArgumentError):
        tomo.fit(np.zeros(6))
    with pytest.raises(InvalidArgumentError):
        tomo.fit(freqs, dilution=0.)
    with pytest.raises(InvalidArgumentError):
        tomo.fit(freqs, entropy_penalty=-1.)
    with pytest.raises(DimensionMismatchError):
        tomo.fit(freqs, rho0=np.eye(3) / 3)
    with pytest.raises(UnsupportedConfigurationError):
        tomo.fit_convex(freqs, formulation='newton')


def test_diluted_mle_pure_state():
    effects, freqs = expectations_to_effects([QX, QY, QZ], [0., 0., 1.])
    rho_est, loglike, status = MLStateTomo(effects).fit(freqs, dilution=.1, maxiter=10000)
    assert status == OPTIMAL
    assert np.linalg.norm(rho_est - GS) < 1e-6
    assert np.isclose(loglike, 4 * .5 * np.log(.5), atol=1e-6)


def test_diluted_mle_rank_deficient_seed():
    effects, freqs = expectations_to_effects([QX, QY, QZ], [0., 0., 1.])
    tomo = MLStateTomo(effects)
    # |1><1| never produces the observed +1 outcome of Z and would be a fixed point
    with pytest.raises(InvalidArgumentError):
        tomo.fit(freqs, dilution=.1, maxiter=50, rho0=ES)
    with pytest.raises(InvalidArgumentError):
        tomo.fit(freqs, rho0=-QI / 2)
    assert tomo.log_likelihood(ES, freqs) == -np.inf

    rho_est, loglike, status = tomo.fit(freqs, dilution=.1, maxiter=10000,
                                        rho0=.99 * ES + .01 * GS)
    assert status == OPTIMAL
    assert np.linalg.norm(rho_est - GS) < 1e-6
    assert np.isfinite(loglike)


def test_diluted_mle_two_stage_dilution():
    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO)
    epsilon = 2.
    # every effect has probability 1/2 in the maximally mixed state
    r_op = np.tensordot(freqs / freqs.sum() / .5, tomo.effects, axes=1)
    t_op = (QI + epsilon * r_op) / (1. + epsilon)
    u_op = (QI + epsilon * t_op) / (1. + epsilon)
    expected = u_op.dot(QI / 2.).dot(u_op)
    expected /= np.trace(expected)

    rho, _, _ = tomo.fit(freqs, dilution=(1. + 2. * epsilon) / epsilon ** 2, maxiter=1)
    assert np.allclose(rho, expected)


def test_diluted_mle_mixed_state():
    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO)
    rho_est, loglike, status = tomo.fit(freqs, dilution=.1)
    assert status == OPTIMAL
    assert_physical(rho_est, 1e-8)
    assert np.allclose(rho_est, RHO, atol=1e-5)
    assert np.allclose(tomo.predict(rho_est), freqs, atol=1e-5)
    assert np.isclose(loglike, tomo.log_likelihood(RHO, freqs), atol=1e-8)

    # counts instead of frequencies give the same state
    rho_counts, _, _ = tomo.fit(1000 * freqs, dilution=.1)
    assert np.allclose(rho_counts, rho_est)


def test_diluted_mle_monotonic():
    rs = np.random.RandomState(SEED)
    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO) + rs.uniform(0, .05, size=6)

    rho = None
    loglikes = []
    for _ in range(30):
        rho, loglike, _ = tomo.fit(freqs, dilution=10., maxiter=1, rho0=rho)
        assert_physical(rho, 1e-8)
        loglikes.append(loglike)
    assert np.all(np.diff(loglikes) >= -1e-12)
    assert loglikes[-1] > loglikes[0]


def test_diluted_mle_idempotent():
    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO)
    first = tomo.fit(freqs, dilution=.1)
    second = tomo.fit(freqs, dilution=.1)
    assert np.allclose(first.estimate, second.estimate)
    assert np.isclose(first.objective, second.objective)
    assert first.status == second.status


def test_diluted_mle_maxiter():
    tomo = MLStateTomo(pauli_effects(1))
    rho_est, _, status = tomo.fit(tomo.predict(RHO), dilution=10., tol=1e-15, maxiter=2)
    assert status == MAXITER
    assert_physical(rho_est, 1e-8)


def test_diluted_mle_entropy_penalty():
    effects, freqs = expectations_to_effects([QX, QY, QZ], [0., 0., 1.])
    tomo = MLStateTomo(effects)
    rho_plain, _, _ = tomo.fit(freqs, dilution=.1, maxiter=10000)
    rho_entropy, _, _ = tomo.fit(freqs, dilution=.1, entropy_penalty=.1, maxiter=5000)
    assert_physical(rho_entropy, 1e-8)
    purity = np.trace(rho_entropy.dot(rho_entropy)).real
    assert purity < np.trace(rho_plain.dot(rho_plain)).real - EPS
    assert fidelity(rho_entropy, GS) > .9


@pytest.mark.parametrize('formulation', [DIRECT_LOG, AUXILIARY_PROBS])
def test_convex_mle(formulation):
    tomo = MLStateTomo(pauli_effects(1))
    freqs = tomo.predict(RHO)
    rho_est, loglike, status = tomo.fit_convex(freqs, formulation=formulation)
    assert status in SOLVED
    assert_physical(rho_est)
    assert np.allclose(rho_est, RHO, atol=EPS)
    assert np.isclose(loglike, tomo.log_likelihood(RHO, freqs), atol=EPS)

    rho_diluted, _, _ = tomo.fit(freqs, dilution=.1)
    assert np.allclose(rho_est, rho_diluted, atol=EPS)


def test_convex_mle_hedged():
    effects, freqs = expectations_to_effects([QX, QY, QZ], [0., 0., 1.])
    rho_est, _, status = MLStateTomo(effects, beta=.5).fit_convex(freqs)
    assert status in SOLVED
    assert_physical(rho_est)
    # hedging keeps the estimate away from the boundary of the state space
    assert np.linalg.eigvalsh(rho_est).min() > .1
