"""
Abstract base classes for backends.

Defines the interface all backends must implement.
"""

from abc import ABC, abstractmethod
import numpy as np
from typing import Optional
from dataclasses import dataclass


@dataclass
class LinearModelResult:
    """Weighted least-squares step results."""
    coef: np.ndarray           # NaN for aliased columns
    fitted_values: np.ndarray
    rank: int
    cov_unscaled: np.ndarray   # (X'WX)⁻¹, intercept first


class BackendBase(ABC):
    """Abstract base class for all backends."""

    name = "base"
    precision = "fp64"

    @abstractmethod
    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
        singular_ok: bool = True
    ) -> LinearModelResult:
        """
        Fit linear model - complete computation.

        Backends implement ALL computation internally using their
        native types, only converting at entry/exit.

        Parameters
        ----------
        X : ndarray, shape (n, p)
            Design matrix (WITHOUT intercept)
        y : ndarray, shape (n,)
            Response vector
        weights : ndarray, optional
            Observation weights
        tol : float, optional
            Tolerance for rank determination
        singular_ok : bool
            Allow singular fits. If False, a rank-deficient fit raises
            SingularMatrixError.

        Returns
        -------
        LinearModelResult
            Complete regression results (all numpy arrays)
        """
        pass

    @abstractmethod
    def get_device_info(self) -> dict:
        """Get backend information."""
        pass


class CPUBackend(BackendBase):
    """CPU backend base class (always FP64)."""
    pass
