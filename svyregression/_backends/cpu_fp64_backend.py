"""
CPU backend using NumPy + SciPy.

This is the reference implementation validated against R.
"""

import numpy as np
from scipy.linalg import qr, solve_triangular
from typing import Optional

from .base import CPUBackend, LinearModelResult
from .._utils import check_array, check_vector
from ..exceptions import SingularMatrixError


class CPUBackendFP64(CPUBackend):
    """
    CPU backend using NumPy + SciPy.

    Reference implementation for R compatibility.
    Always uses FP64 precision.
    """

    # R's lm.fit default
    DEFAULT_TOL = 1e-7

    def __init__(self):
        self.name = "cpu_fp64"
        self.precision = "fp64"

    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
        singular_ok: bool = True
    ) -> LinearModelResult:
        """
        Fit linear model using NumPy/LAPACK.

        Columns are scaled to unit norm before the pivoted QR, so rank
        detection does not depend on the units of the covariates (age²
        next to an intercept, say).
        """
        X = check_array(X)
        y = check_vector(y)
        n = len(y)
        if X.shape[0] != n:
            raise ValueError(f"X has {X.shape[0]} rows but y has {n} values")

        y_work = y.copy()

        # Add intercept
        X_full = np.column_stack([np.ones(n), X])
        p = X_full.shape[1]

        # Handle weights
        if weights is not None:
            good = weights > 0
            if not np.any(good):
                raise ValueError("All weights are zero")

            w_sqrt = np.sqrt(weights[good])
            X_work = X_full[good, :] * w_sqrt[:, np.newaxis]
            y_work = y_work[good] * w_sqrt
        else:
            X_work = X_full

        # Ensure float64
        X_work = np.asarray(X_work, dtype=np.float64)
        y_work = np.asarray(y_work, dtype=np.float64)

        if tol is None:
            tol = self.DEFAULT_TOL

        # Unit-norm columns; all-zero columns (empty cells) stay zero
        scale = np.linalg.norm(X_work, axis=0)
        scale[scale == 0] = 1.0
        X_scaled = X_work / scale

        # QR decomposition with column pivoting
        Q, R, P = qr(X_scaled, mode='economic', pivoting=True)

        # Determine rank
        R_diag = np.abs(np.diag(R))
        if R_diag.size == 0 or R_diag[0] == 0:
            rank = 0
        else:
            rank = int(np.sum(R_diag >= tol * R_diag[0]))

        if not singular_ok and rank < p:
            raise SingularMatrixError(
                f"Singular fit: rank {rank} < {p} columns",
                rank=rank, n_columns=p
            )

        # Solve R β = Q'y
        qty = Q.T @ y_work

        # Initialize coefficients (with NaN for aliased)
        coef = np.full(p, np.nan, dtype=np.float64)
        cov_unscaled = np.full((p, p), np.nan, dtype=np.float64)

        if rank > 0:
            active = P[:rank]
            R_active = R[:rank, :rank]

            # Back-solve for non-aliased coefficients
            coef_active = solve_triangular(R_active, qty[:rank], lower=False)
            coef[active] = coef_active / scale[active]

            # (X'WX)⁻¹ = D⁻¹ (R'R)⁻¹ D⁻¹, placed back in original order
            R_inv = solve_triangular(R_active, np.eye(rank), lower=False)
            XtX_inv = (R_inv @ R_inv.T) / np.outer(scale[active], scale[active])
            cov_unscaled[np.ix_(active, active)] = XtX_inv

        # Compute fitted values (handling NaN coefficients for aliased terms)
        valid_coef = ~np.isnan(coef)
        if np.any(valid_coef):
            fitted = X_full[:, valid_coef] @ coef[valid_coef]
        else:
            fitted = np.zeros(n, dtype=np.float64)

        return LinearModelResult(
            coef=coef,
            fitted_values=fitted,
            rank=rank,
            cov_unscaled=cov_unscaled,
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        import scipy
        return {
            'backend': 'cpu',
            'precision': 'fp64',
            'library': f'NumPy {np.__version__}, SciPy {scipy.__version__}',
        }
