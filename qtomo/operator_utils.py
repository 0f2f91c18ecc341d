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
Utilities for checking and transforming quantum operators and super-operators represented as
numpy arrays (qutip.Qobj's and scipy sparse matrices are accepted as inputs).
"""

import logging
import numbers

import numpy as np
from scipy.sparse import csr_matrix, hstack as sphstack, vstack as spvstack, kron as spkron
from scipy.sparse import issparse

from qtomo.utils import import_qutip, ketbra, to_array, vec, unvec

_log = logging.getLogger(__name__)

qt = import_qutip()


EPS = 1e-8


class TomographyBaseError(Exception):
    """
    Base class for errors raised during tomography analysis.
    """
    pass


class DimensionMismatchError(TomographyBaseError, ValueError):
    """
    Raised when operators have inconsistent dimensions or when observations do not match the
    number of predicted outcomes.
    """
    pass


class InvalidArgumentError(TomographyBaseError, ValueError):
    """
    Raised when an argument has the right shape but an invalid value, e.g., a non-positive variance
    or an effect that is not positive semi-definite.
    """
    pass


class UnsupportedConfigurationError(TomographyBaseError, ValueError):
    """
    Raised when an estimator is asked to use an unknown algorithm or formulation.
    """
    pass


def operator_dimension(operators):
    """
    Convert a collection of operators to dense matrices and check that they are all square with a
    common dimension.

    :param (list|tuple) operators: The operators.
    :return: The dense operators and their common dimension.
    :rtype: tuple
    """
    mats = [to_array(op) for op in operators]
    if not mats:
        raise DimensionMismatchError("Need at least one operator.")
    dim = mats[0].shape[0] if mats[0].ndim == 2 else None
    for jj, mat in enumerate(mats):
        if mat.ndim != 2 or mat.shape != (dim, dim):
            raise DimensionMismatchError(
                "Operator {} has shape {}, expected ({}, {}).".format(jj, mat.shape, dim, dim))
    return mats, dim


def is_hermitian(operator):
    """
    Check if matrix or operator is hermitian.

    :param (numpy.ndarray|qutip.Qobj|scipy.sparse.spmatrix) operator: The operator or matrix to be
        tested.
    :return: True if the operator is hermitian.
    :rtype: bool
    """
    mat = to_array(operator)
    if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
        return False
    norm = np.linalg.norm(mat)
    if norm == 0:
        return True
    return np.linalg.norm(mat.T.conj() - mat) / norm < EPS


def is_positive_semidefinite(operator, tol=EPS):
    """
    Check if a matrix is hermitian and has no eigenvalue below ``-tol``.

    :param (numpy.ndarray|qutip.Qobj|scipy.sparse.spmatrix) operator: The operator.
    :param float tol: The numerical tolerance for the smallest eigenvalue.
    :return: True if the operator is positive semi-definite.
    :rtype: bool
    """
    if not is_hermitian(operator):
        return False
    mat = to_array(operator)
    return np.linalg.eigvalsh((mat + mat.T.conj()) / 2.).min() >= -tol


def is_projector(operator):
    """
    Check if operator is a projector.

    :param (numpy.ndarray|qutip.Qobj) operator: The operator or matrix to be tested.
    :return: True if the operator is a projector.
    :rtype: bool
    """
    # verify that P^dag=P and P^2-P=0 holds up to relative numerical accuracy EPS.
    mat = to_array(operator)
    return (is_hermitian(mat) and
            np.linalg.norm(mat.dot(mat) - mat) / np.linalg.norm(mat) < EPS)


def check_povm_effect(effect, tol=EPS):
    """
    Verify that an operator is a valid POVM effect: hermitian, positive semi-definite and with a
    trace no larger than one.

    :param numpy.ndarray effect: The effect.
    :param float tol: Numerical tolerance.
    :raises InvalidArgumentError: If any of the conditions fails.
    """
    if not is_hermitian(effect):
        raise InvalidArgumentError("POVM effect is not hermitian:\n{}".format(effect))
    if not is_positive_semidefinite(effect, tol):
        raise InvalidArgumentError("POVM effect is not positive semi-definite:\n{}".format(effect))
    if np.trace(to_array(effect)).real > 1 + tol:
        raise InvalidArgumentError("POVM effect has trace larger than one:\n{}".format(effect))


def to_realimag(z):
    """
    Convert a complex hermitian matrix to a real valued doubled up representation, i.e., for
    ``Z = Z_r + 1j * Z_i`` return ``R(Z)``::

        R(Z) = [ Z_r  -Z_i]
               [ Z_i   Z_r]

    The map is an algebra homomorphism, ``R(X)*R(Y) = R(X*Y)``, and ``R(Z)`` has the same
    eigenvalues as ``Z``, each with doubled multiplicity. In particular, ``Z`` is complex positive
    (semi-)definite iff ``R(Z)`` is real positive (semi-)definite.

    :param (numpy.ndarray|qutip.Qobj|scipy.sparse.spmatrix) z:  The operator representation matrix.
    :returns: R(Z) the doubled up representation.
    :rtype: scipy.sparse.csr_matrix
    """
    z = csr_matrix(to_array(z))
    if not is_hermitian(z):  # pragma no coverage
        raise InvalidArgumentError("Need a hermitian matrix z")
    return spvstack([sphstack([z.real, -z.imag]), sphstack([z.imag, z.real])]).tocsr().real


def from_realimag(block):
    """
    Recover the complex matrix ``Z`` from its doubled up representation ``R(Z)``, see
    :py:func:`to_realimag`. Only the left block column is read.

    :param (numpy.ndarray|scipy.sparse.spmatrix) block: A real ``(2d, 2d)`` matrix.
    :return: The complex ``(d, d)`` matrix.
    :rtype: numpy.ndarray
    """
    block = block.toarray() if issparse(block) else np.asarray(block)
    dim = block.shape[0] // 2
    return block[:dim, :dim] + 1j * block[dim:, :dim]


def trb_sop(da, db):
    """
    Construct the super-operator that traces out the second tensor factor (dimension ``db``) of an
    operator on a bipartite space of dimension ``da * db``, i.e.::

        trb_sop(da, db).dot(vec(M)) == vec(Tr_b[M])

    It is accumulated from the matrix units as
    ``sum_{ijk} vec(|i><j|) vec(|i><j| (x) |k><k|)^T``.

    :param int da: The dimension of the subsystem that is kept.
    :param int db: The dimension of the subsystem that is traced out.
    :return: The sparse ``(da**2, (da*db)**2)`` super-operator.
    :rtype: scipy.sparse.csr_matrix
    """
    for dim in (da, db):
        if not isinstance(dim, numbers.Integral) or dim < 1:
            raise InvalidArgumentError("Dimensions must be positive integers, got {}".format(dim))
    sop = csr_matrix((da ** 2, (da * db) ** 2))
    for i in range(da):
        for j in range(da):
            unit_ij = ketbra(i, j, da)
            col_ij = csr_matrix(vec(unit_ij.toarray())).T
            for k in range(db):
                row = csr_matrix(vec(spkron(unit_ij, ketbra(k, k, db)).toarray()))
                sop = sop + col_ij.dot(row)
    return sop.tocsr()


def partial_trace_b(matrix, da, db):
    """
    Trace out the second tensor factor of a bipartite operator using :py:func:`trb_sop`.

    :param numpy.ndarray matrix: An operator of dimension ``da * db``.
    :param int da: The dimension of the first (remaining) subsystem.
    :param int db: The dimension of the second (traced out) subsystem.
    :return: The reduced ``(da, da)`` operator.
    :rtype: numpy.ndarray
    """
    matrix = to_array(matrix)
    if matrix.shape != (da * db, da * db):
        raise DimensionMismatchError("Expected a ({0}, {0}) matrix, got {1}".format(
            da * db, matrix.shape))
    return unvec(trb_sop(da, db).dot(vec(matrix)))


def choi_from_kraus(kraus_ops):
    """
    Compute the Choi matrix ``J = sum_ij |i><j| (x) E(|i><j|)`` of the channel
    ``E(rho) = sum_k K_k rho K_k^dag``. The first tensor factor is the channel input, the second
    one the output, such that a trace preserving channel satisfies ``Tr_2[J] = I``.

    :param list kraus_ops: The Kraus operators of the channel.
    :return: The ``(d**2, d**2)`` Choi matrix.
    :rtype: numpy.ndarray
    """
    kraus_ops, dim = operator_dimension(kraus_ops)
    choi = np.zeros((dim ** 2, dim ** 2), dtype=complex)
    for i in range(dim):
        for j in range(dim):
            unit_ij = ketbra(i, j, dim).toarray()
            out_ij = sum(k.dot(unit_ij).dot(k.conj().T) for k in kraus_ops)
            choi += np.kron(unit_ij, out_ij)
    return choi


def apply_choi(choi, rho):
    """
    Apply the channel represented by a Choi matrix (see :py:func:`choi_from_kraus`) to a state::

        E(rho) = Tr_1[J (rho^T (x) I)]

    :param numpy.ndarray choi: The ``(d**2, d**2)`` Choi matrix.
    :param numpy.ndarray rho: The ``(d, d)`` input operator.
    :return: The output operator.
    :rtype: numpy.ndarray
    """
    choi = to_array(choi)
    rho = to_array(rho)
    dim = rho.shape[0]
    if choi.shape != (dim ** 2, dim ** 2):
        raise DimensionMismatchError("Choi matrix of shape {} cannot act on a {}-dim state".format(
            choi.shape, dim))
    # J_{(i a),(j b)} rho_{i j} summed over the input indices i, j
    tensor = choi.reshape((dim, dim, dim, dim))
    return np.einsum('iajb,ij->ab', tensor, rho)


def expectations_to_effects(observables, means):
    """
    Convert expectation values of observables with eigenvalues +1 and -1 (e.g. Pauli operators)
    into projective effects and outcome frequencies suitable for maximum likelihood estimation.
    Every observable ``O`` with mean ``m`` contributes the two effects ``(I + O)/2`` and
    ``(I - O)/2`` with frequencies ``(1 + m)/2`` and ``(1 - m)/2``.

    :param list observables: The observables, each squaring to the identity.
    :param list means: The measured expectation values in ``[-1, 1]``.
    :return: The effects and the corresponding frequencies.
    :rtype: tuple
    """
    observables, dim = operator_dimension(observables)
    means = np.asarray(means, dtype=float).ravel()
    if len(means) != len(observables):
        raise DimensionMismatchError("Got {} means for {} observables".format(
            len(means), len(observables)))
    if np.any(np.abs(means) > 1 + EPS):
        raise InvalidArgumentError("Means of +/-1 valued observables must lie in [-1, 1]")
    identity = np.eye(dim)
    effects = []
    freqs = []
    for obs, mean in zip(observables, means):
        if not is_hermitian(obs) or not np.allclose(obs.dot(obs), identity, atol=EPS):
            raise InvalidArgumentError("Observable must be hermitian and square to the identity")
        effects.append((identity + obs) / 2.)
        effects.append((identity - obs) / 2.)
        freqs.append((1. + mean) / 2.)
        freqs.append((1. - mean) / 2.)
    return effects, np.clip(freqs, 0., 1.)


def fidelity(rho, sigma):
    """
    Compute the quantum state fidelity ``Tr[sqrt(sqrt(rho) sigma sqrt(rho))]`` of two states.

    :param (numpy.ndarray|qutip.Qobj) rho: The first density matrix.
    :param (numpy.ndarray|qutip.Qobj) sigma: The second density matrix.
    :return: The fidelity, a real number between 0 and 1.
    :rtype: float
    """
    rho = to_array(rho)
    sigma = to_array(sigma)
    if rho.shape != sigma.shape:
        raise DimensionMismatchError("Cannot compare states of shape {} and {}".format(
            rho.shape, sigma.shape))
    return qt.fidelity(qt.Qobj(rho), qt.Qobj(sigma))


# Single qubit operators used to set up tomographic measurements.
QI = np.eye(2, dtype=complex)
QX = np.array([[0, 1], [1, 0]], dtype=complex)
QY = np.array([[0, -1j], [1j, 0]], dtype=complex)
QZ = np.array([[1, 0], [0, -1]], dtype=complex)
GS = np.array([[1, 0], [0, 0]], dtype=complex)
ES = np.array([[0, 0], [0, 1]], dtype=complex)
PAULIS = (QI, QX, QY, QZ)


def pauli_effects(n=1):
    """
    The projectors onto the +/-1 eigenspaces of all non-identity ``n``-qubit Pauli operators.
    Each pair of projectors forms a two outcome POVM.

    :param int n: The number of qubits.
    :return: A list of ``2 * (4**n - 1)`` effects.
    :rtype: list
    """
    if n < 1:  # pragma no coverage
        raise InvalidArgumentError("n = {} should be at least 1.".format(n))
    paulis = list(PAULIS)
    for _ in range(n - 1):
        paulis = [np.kron(p, q) for p in paulis for q in PAULIS]
    effects, _ = expectations_to_effects(paulis[1:], np.zeros(len(paulis) - 1))
    return effects
