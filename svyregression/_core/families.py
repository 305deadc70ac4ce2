"""
GLM family definitions.

Defines link functions, variance functions, etc.
"""

import numpy as np
from abc import ABC, abstractmethod

from ..exceptions import InvalidDesignError


class Family(ABC):
    """Base class for GLM families."""

    # Quasi families estimate the dispersion instead of fixing it at 1
    quasi = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Family name."""
        pass

    @property
    @abstractmethod
    def link(self) -> str:
        """Link name."""
        pass

    @abstractmethod
    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        """Link function: η = g(μ)"""
        pass

    @abstractmethod
    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        """Inverse link: μ = g⁻¹(η)"""
        pass

    @abstractmethod
    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        """Derivative: dμ/dη"""
        pass

    @abstractmethod
    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function: V(μ)"""
        pass

    @abstractmethod
    def dev_resids(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        wt: np.ndarray
    ) -> np.ndarray:
        """Deviance residuals (squared, weighted)."""
        pass

    @abstractmethod
    def mustart(self, y: np.ndarray) -> np.ndarray:
        """Starting values for μ."""
        pass

    def validate_response(self, y: np.ndarray):
        """Raise InvalidDesignError if `y` is outside the family's support."""
        pass

    def __repr__(self):
        return f"{type(self).__name__}(link='{self.link}')"


class Poisson(Family):
    """
    Poisson family with log link.

    μ = exp(η) is evaluated with η clipped to the representable range and
    μ floored at machine epsilon, so working weights never vanish and the
    working response never divides by zero.
    """

    EPS = np.finfo(np.float64).eps
    THRESH = np.log(np.finfo(np.float64).max)
    MTHRESH = np.log(EPS)

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def link(self) -> str:
        return "log"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return np.log(mu)

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return np.maximum(np.exp(np.clip(eta, self.MTHRESH, self.THRESH)), self.EPS)

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return self.linkinv(eta)

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return mu

    def dev_resids(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        wt: np.ndarray
    ) -> np.ndarray:
        # y log(y/μ) is taken as 0 at y = 0
        with np.errstate(divide='ignore', invalid='ignore'):
            ylogy = np.where(y > 0, y * np.log(y / mu), 0.0)
        return 2 * wt * (ylogy - (y - mu))

    def mustart(self, y: np.ndarray) -> np.ndarray:
        return y + 0.1

    def validate_response(self, y: np.ndarray):
        if np.any(y < 0):
            raise InvalidDesignError(
                "negative values not allowed for the 'Poisson' family"
            )


class QuasiPoisson(Poisson):
    """
    Quasi-Poisson family: Poisson mean structure, free dispersion.

    Var(Y) = φ μ, with φ estimated from Pearson residuals after fitting.
    """

    quasi = True

    @property
    def name(self) -> str:
        return "quasipoisson"


__all__ = ["Family", "Poisson", "QuasiPoisson"]
