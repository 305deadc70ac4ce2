"""
Survey-weighted generalized linear models.

Main user-facing interface for GLMs, the equivalent of R's
survey::svyglm(). Coefficients come from IRLS with the sampling weights as
prior weights; inference uses the design-based (sandwich) covariance.
"""

import warnings
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from ._backends import get_backend
from ._core.families import Family, QuasiPoisson
from ._core.irls import irls_step, relative_change
from ._core.variance import stratified_cluster_variance
from ._utils import check_fields
from .design import SurveyDesign
from .exceptions import (
    ConvergenceError,
    EmptyDesignError,
    InvalidDesignError,
    InvalidFormulaError,
)
from .formula import BoundFormula, ModelFormula, Term


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Results from survey GLM fitting. Immutable.

    Attributes
    ----------
    coefficients : ndarray
        Estimates, intercept first, in ``formula.column_names`` order
    cov : ndarray
        Design-based covariance of the coefficients (used for inference)
    naive_cov : ndarray
        Model-based covariance scaled by the dispersion (for comparison)
    formula : BoundFormula
        Term structure used to build the model matrix
    family : Family
    outcome : str
    dispersion : float
        Weighted mean squared Pearson residual (1 for non-quasi families)
    deviance, null_deviance : float
        With sampling weights rescaled to mean 1
    n_obs : int
        Records used in the fit
    df_residual : int
        Design degrees of freedom minus (rank - 1)
    iterations : int
        IRLS iterations
    converged : bool
    typical : dict
        Typical covariate values in the fitting data, used by datagrid()
    """
    coefficients: np.ndarray
    cov: np.ndarray
    naive_cov: np.ndarray
    formula: BoundFormula
    family: Family
    outcome: str
    dispersion: float
    deviance: float
    null_deviance: float
    n_obs: int
    df_residual: int
    iterations: int
    converged: bool
    typical: dict = field(default_factory=dict)

    def __post_init__(self):
        for arr in (self.coefficients, self.cov, self.naive_cov):
            arr.setflags(write=False)

    @property
    def link(self) -> str:
        return self.family.link

    @property
    def var_names(self):
        return self.formula.column_names

    @property
    def coef(self) -> pd.Series:
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coefficients, index=self.var_names)

    @property
    def vcov(self) -> pd.DataFrame:
        """Design-based variance-covariance matrix (DataFrame)."""
        return pd.DataFrame(self.cov, index=self.var_names, columns=self.var_names)

    @property
    def std_errors(self) -> np.ndarray:
        return np.sqrt(np.diag(self.cov))

    @property
    def t_values(self) -> np.ndarray:
        return self.coefficients / self.std_errors

    @property
    def pvalues(self) -> np.ndarray:
        """Two-tailed p-values on df_residual degrees of freedom."""
        return 2 * stats.t.sf(np.abs(self.t_values), self.df_residual)

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Confidence intervals for coefficients (link scale).

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        t_crit = stats.t.ppf(1 - alpha / 2, self.df_residual)
        lower = self.coefficients - t_crit * self.std_errors
        upper = self.coefficients + t_crit * self.std_errors

        return pd.DataFrame({
            'lower': lower,
            'upper': upper
        }, index=self.var_names)

    def predict(self, grid: pd.DataFrame, level: float = 0.95) -> pd.DataFrame:
        """Predictions with delta-method intervals; see predict.predict."""
        from .predict import predict
        return predict(self, grid, level=level)

    def summary(self):
        """
        Print summary of regression results (like R's summary.svyglm).
        """
        print()
        print("=" * 80)
        print("SURVEY-WEIGHTED GENERALIZED LINEAR MODEL")
        print("=" * 80)
        print()

        print(f"Family: {self.family.name} (link = {self.link})")
        print(f"Formula: {self.outcome} ~ {_formula_text(self.formula)}")
        print(f"Number of observations: {self.n_obs}")
        print(f"Degrees of freedom: {self.df_residual} (residual, design-based)")
        print()

        print("Coefficients:")
        print("-" * 80)
        print(f"{'Variable':<28} {'Estimate':>12} {'Std. Error':>12} {'t value':>10} {'Pr(>|t|)':>12}")
        print("-" * 80)

        for i, name in enumerate(self.var_names):
            p = self.pvalues[i]
            if np.isnan(p):
                sig = ''
                p_str = 'NA'
            else:
                if p < 0.001:
                    sig = ' ***'
                elif p < 0.01:
                    sig = ' **'
                elif p < 0.05:
                    sig = ' *'
                elif p < 0.1:
                    sig = ' .'
                else:
                    sig = ''

                p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"

            print(f"{name:<28} {self.coefficients[i]:>12.4f} {self.std_errors[i]:>12.4f} "
                  f"{self.t_values[i]:>10.3f} {p_str:>12}{sig}")

        print("-" * 80)
        print("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
        print()

        print(f"(Dispersion parameter for {self.family.name} family taken to be {self.dispersion:.4f})")
        print(f"Residual deviance: {self.deviance:.2f}   Null deviance: {self.null_deviance:.2f}")
        print(f"Number of Fisher Scoring iterations: {self.iterations}")
        print("=" * 80)
        print()

    def __repr__(self):
        return (
            f"FittedModel({self.family.name}, n={self.n_obs}, "
            f"p={len(self.coefficients)}, dispersion={self.dispersion:.3f})"
        )


def _formula_text(bound: BoundFormula) -> str:
    return ' + '.join(['1'] + bound.column_names[1:])


class SurveyGLM:
    """
    Generalized linear model for complex survey data via IRLS.

    Point estimates match an ordinary GLM with the sampling weights as
    prior weights. Standard errors come from the linearized (sandwich)
    covariance computed with the design's strata and clusters.

    Algorithm:
    ---------
    Iteratively Reweighted Least Squares (IRLS), one weighted least-squares
    solve per iteration. Converged when

        max|β - β_old| / (0.1 + max|β_old|) < epsilon

    Reference:
    ---------
    R source: survey/R/svyglm.R, stats/R/glm.R (glm.fit function)
    """

    def __init__(self, family: Optional[Family] = None, backend='auto'):
        """
        Parameters
        ----------
        family : Family, default=QuasiPoisson()
            GLM family
        backend : str or BackendBase, default='auto'
            Backend for the least-squares steps
        """
        self.family = family if family is not None else QuasiPoisson()
        self.backend = get_backend(backend)

    def fit(
        self,
        design: SurveyDesign,
        formula: Union[ModelFormula, Sequence[Union[str, Term]]],
        outcome_field: str,
        maxit: int = 25,
        epsilon: float = 1e-8,
    ) -> FittedModel:
        """
        Fit the model.

        Parameters
        ----------
        design : SurveyDesign
        formula : ModelFormula or list of str/Term
            Right-hand side terms (intercept implied)
        outcome_field : str
            Response variable
        maxit : int, default=25
            Maximum IRLS iterations, at least 2
        epsilon : float, default=1e-8
            Convergence tolerance on the relative coefficient change

        Returns
        -------
        FittedModel

        Raises
        ------
        InvalidFormulaError
            Malformed/duplicate terms or unknown fields
        InvalidDesignError
            Non-numeric outcome, or values outside the family's support
        EmptyDesignError
            No complete records
        SingularMatrixError
            Rank-deficient weighted model matrix
        ConvergenceError
            No convergence within `maxit` iterations
        """
        # Convergence compares successive iterates
        if maxit < 2:
            raise ValueError(f"maxit must be >= 2, got {maxit}")

        if not isinstance(formula, ModelFormula):
            formula = ModelFormula(formula)
        check_fields(design._frame, [outcome_field],
                     error=InvalidFormulaError, what='Outcome field')
        check_fields(design._frame, formula.fields,
                     error=InvalidFormulaError, what='Model term field')

        # Records missing the outcome or a covariate leave this fit only
        used = design._complete_cases((outcome_field,) + formula.fields)
        n_excluded = len(design) - int(used.sum())
        if n_excluded:
            warnings.warn(
                f"{n_excluded} record(s) with missing values excluded from "
                f"the model for '{outcome_field}'"
            )
        if not used.any():
            raise EmptyDesignError(
                f"No complete records to model '{outcome_field}'"
            )

        data = design._frame.loc[used]
        bound = formula.bind(data)
        X = bound.matrix(data, intercept=False)
        try:
            y = pd.to_numeric(data[outcome_field]).to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidDesignError(
                f"Outcome field '{outcome_field}' is not numeric: {exc}"
            ) from exc
        self.family.validate_response(y)

        # Rescaled to mean 1; estimates and sandwich are scale invariant
        w = design._sampling_weights()[used]
        w = w / w.mean()

        coef, eta, mu, cov_unscaled, iterations = self._irls(X, y, w, maxit, epsilon)

        family = self.family
        X1 = np.column_stack([np.ones(len(y)), X])

        # Score residuals, then influence of each record on the coefficients
        mu_eta = family.mu_eta(eta)
        score_resid = w * (y - mu) * mu_eta / family.variance(mu)
        infl = (X1 * score_resid[:, np.newaxis]) @ cov_unscaled

        scores = np.zeros((len(design._frame), X1.shape[1]))
        scores[used] = infl
        cov = stratified_cluster_variance(
            scores, design._clusters(), design._strata(), design.lonely_psu
        )

        if family.quasi:
            pearson2 = w * (y - mu) ** 2 / family.variance(mu)
            dispersion = float(pearson2.sum() / w.sum())
        else:
            dispersion = 1.0

        mu_null = np.full_like(y, np.sum(w * y) / np.sum(w))
        deviance = float(np.sum(family.dev_resids(y, mu, w)))
        null_deviance = float(np.sum(family.dev_resids(y, mu_null, w)))

        return FittedModel(
            coefficients=coef,
            cov=cov,
            naive_cov=dispersion * cov_unscaled,
            formula=bound,
            family=family,
            outcome=outcome_field,
            dispersion=dispersion,
            deviance=deviance,
            null_deviance=null_deviance,
            n_obs=int(used.sum()),
            df_residual=design.degf() + 1 - len(coef),
            iterations=iterations,
            converged=True,
            typical=_typical_values(data, bound, w),
        )

    def _irls(self, X, y, w, maxit, epsilon):
        family = self.family

        mu = family.mustart(y)
        eta = family.linkfun(mu)
        coef_old = None

        for iteration in range(1, maxit + 1):
            step = irls_step(X, y, w, eta, mu, family, backend=self.backend)
            coef = step.coef
            eta = step.fitted_values
            mu = family.linkinv(eta)

            if coef_old is not None and relative_change(coef, coef_old) < epsilon:
                return coef, eta, mu, step.cov_unscaled, iteration
            coef_old = coef

        raise ConvergenceError(
            f"IRLS did not converge in {maxit} iterations",
            iterations=maxit, coef=coef_old
        )


def _typical_values(data: pd.DataFrame, bound: BoundFormula, w: np.ndarray) -> dict:
    """Weighted mean of numeric covariates, modal level of categorical ones."""
    factor_names = {f.name for f in bound.factors}
    typical = {}
    for name in bound.fields:
        if name in factor_names:
            typical[name] = data[name].value_counts().idxmax()
        else:
            x = pd.to_numeric(data[name]).to_numpy(dtype=np.float64)
            typical[name] = float(np.sum(w * x) / np.sum(w))
    return typical


def fit_quasipoisson(
    design: SurveyDesign,
    formula_terms: Union[ModelFormula, Sequence[Union[str, Term]]],
    outcome_field: str,
    maxit: int = 25,
    epsilon: float = 1e-8,
    backend='auto',
) -> FittedModel:
    """
    Fit a survey-weighted quasi-Poisson (log link) regression.

    Parameters
    ----------
    design : SurveyDesign
    formula_terms : list of str/Term, or ModelFormula
        Right-hand side terms, e.g. ``['age', 'age^2']``
    outcome_field : str
        Count outcome
    maxit, epsilon
        IRLS controls (maxit >= 2)
    backend : str, default='auto'

    Returns
    -------
    FittedModel

    Examples
    --------
    >>> m2 = fit_quasipoisson(design, ['age', 'age^2'], 'condition_count')
    >>> m2.summary()
    >>> m2.predict(datagrid(m2, age=range(16, 91)))
    """
    return SurveyGLM(QuasiPoisson(), backend=backend).fit(
        design, formula_terms, outcome_field, maxit=maxit, epsilon=epsilon
    )
