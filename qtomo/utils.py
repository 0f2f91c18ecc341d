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
Low level helpers shared by the tomography modules: lazy imports of the optional numerical
collaborators and the (column-stacking) vectorization convention used throughout.
"""

import logging

import numpy as np
from scipy.sparse import csr_matrix, issparse

_log = logging.getLogger(__name__)


_QUTIP_ERROR_LOGGED = False


def import_qutip():
    """
    Try importing the qutip module, log an error if unsuccessful.

    :return: The qutip module if successful or None
    :rtype: Optional[module]
    """
    global _QUTIP_ERROR_LOGGED
    try:
        import qutip
    except ImportError:  # pragma no coverage
        qutip = None
        if not _QUTIP_ERROR_LOGGED:
            _log.error("Could not import qutip. Qobj inputs and fidelities will not work.")
            _QUTIP_ERROR_LOGGED = True
    return qutip


_CVXPY_ERROR_LOGGED = False


def import_cvxpy():
    """
    Try importing the cvxpy module, log an error if unsuccessful.

    :return: The cvxpy module if successful or None
    :rtype: Optional[module]
    """
    global _CVXPY_ERROR_LOGGED
    try:
        import cvxpy
    except ImportError:  # pragma no coverage
        cvxpy = None
        if not _CVXPY_ERROR_LOGGED:
            _log.error("Could not import cvxpy. Constrained estimators will not function.")
            _CVXPY_ERROR_LOGGED = True
    return cvxpy


qt = import_qutip()


def to_array(operator):
    """
    Convert an operator given as a qutip.Qobj, a scipy sparse matrix or any array-like into a dense
    complex numpy array.

    :param (qutip.Qobj|scipy.sparse.spmatrix|numpy.ndarray|list) operator: The operator.
    :return: The dense matrix representation.
    :rtype: numpy.ndarray
    """
    if qt is not None and isinstance(operator, qt.Qobj):
        return np.asarray(operator.full(), dtype=complex)
    if issparse(operator):
        return operator.toarray().astype(complex)
    return np.asarray(operator, dtype=complex)


def vec(matrix):
    """
    Vectorize a matrix by stacking its columns.

    With this convention ``vec(A.dot(X).dot(B)) == np.kron(B.T, A).dot(vec(X))``.

    :param numpy.ndarray matrix: A 2d array.
    :return: The column-stacked vector.
    :rtype: numpy.ndarray
    """
    return np.asarray(matrix).ravel(order='F')


def unvec(vector, shape=None):
    """
    Invert :py:func:`vec`. If no shape is given the matrix is assumed to be square.

    :param numpy.ndarray vector: A vector of length ``n * m``.
    :param tuple shape: (Optional) the shape ``(n, m)`` of the result.
    :return: The matrix whose columns are consecutive chunks of ``vector``.
    :rtype: numpy.ndarray
    """
    vector = np.asarray(vector).ravel()
    if shape is None:
        dim = int(round(np.sqrt(vector.size)))
        shape = (dim, dim)
    return vector.reshape(shape, order='F')


def ketbra(a, b, dim):
    """
    The sparse matrix unit ``|a><b|`` of a ``dim``-dimensional Hilbert space.

    :param int a: Row index.
    :param int b: Column index.
    :param int dim: The Hilbert space dimension.
    :return: A sparse matrix with a single unit entry.
    :rtype: scipy.sparse.csr_matrix
    """
    return csr_matrix(([1.0], ([a], [b])), shape=(dim, dim))


def integer_root(number, power=2):
    """
    Compute the integer ``power``-th root of ``number`` if it exists.

    :param int number: The number.
    :param int power: The order of the root.
    :return: The root, or None if ``number`` is not a perfect power.
    :rtype: Optional[int]
    """
    root = int(round(number ** (1. / power)))
    if root ** power != number:
        return None
    return root
