"""
Iteratively reweighted least squares.

Each iteration linearizes the GLM around the current fit and hands the
resulting weighted least-squares problem to a backend.
"""

import numpy as np
from typing import Optional

from .families import Family


def irls_step(
    X: np.ndarray,
    y: np.ndarray,
    prior_weights: np.ndarray,
    eta: np.ndarray,
    mu: np.ndarray,
    family: Family,
    tol: Optional[float] = None,
    backend=None,
):
    """
    One Fisher scoring step.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Design matrix (WITHOUT intercept)
    y : ndarray, shape (n,)
        Response
    prior_weights : ndarray, shape (n,)
        Sampling weights, rescaled to mean 1
    eta, mu : ndarray, shape (n,)
        Current linear predictor and mean
    family : Family
    tol : float, optional
        Rank determination tolerance
    backend : Backend, optional
        Computational backend (default: CPU)

    Returns
    -------
    result : LinearModelResult (from backend)
        Updated coefficients; ``fitted_values`` is the new eta and
        ``cov_unscaled`` is (X'WX)⁻¹ at the working weights.

    Raises
    ------
    SingularMatrixError
        Weighted design matrix is rank deficient.
    """
    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')

    mu_eta = family.mu_eta(eta)
    z = eta + (y - mu) / mu_eta
    working_weights = prior_weights * mu_eta ** 2 / family.variance(mu)

    return backend.fit_linear_model(
        X, z,
        weights=working_weights,
        tol=tol,
        singular_ok=False
    )


def relative_change(coef: np.ndarray, coef_old: np.ndarray) -> float:
    """max|β - β_old| / (0.1 + max|β_old|)"""
    return float(np.max(np.abs(coef - coef_old)) / (0.1 + np.max(np.abs(coef_old))))
