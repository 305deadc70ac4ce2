"""
Linearization (Taylor series) variance for stratified cluster samples.

Backend-agnostic kernel shared by the mean/total estimators and the GLM
sandwich covariance. Replicates R's survey::svyrecvar for one-stage
designs without finite population correction.
"""

import warnings

import numpy as np
import pandas as pd

from ..exceptions import DesignDegeneracyError


def stratified_cluster_variance(
    scores: np.ndarray,
    clusters: np.ndarray,
    strata: np.ndarray,
    lonely_psu: str = 'remove',
) -> np.ndarray:
    """
    Design-based covariance of a sum of per-record contributions.

    Parameters
    ----------
    scores : ndarray, shape (n,) or (n, k)
        Linearized contributions (influence values or score residuals).
        Records outside the estimation domain must be zero.
    clusters : ndarray, shape (n,)
        Cluster (PSU) ids, nested within strata
    strata : ndarray, shape (n,)
        Stratum ids
    lonely_psu : {'remove', 'adjust', 'error'}
        Treatment of single-cluster strata

    Returns
    -------
    ndarray
        Scalar variance for 1-d `scores`, (k, k) covariance otherwise.

    Notes
    -----
    With t_hc the total of `scores` over cluster c of stratum h and n_h the
    number of clusters in h,

        V = sum_h n_h / (n_h - 1) * sum_c (t_hc - mean_c t_hc)^2

    A stratum with n_h = 1 contributes nothing under 'remove'; under
    'adjust' its total is centred on the mean of all cluster totals.
    """
    scores = np.asarray(scores, dtype=np.float64)
    vector = scores.ndim == 1
    if vector:
        scores = scores[:, np.newaxis]

    totals = pd.DataFrame(scores).groupby(
        [np.asarray(strata), np.asarray(clusters)], sort=True
    ).sum()
    t = totals.to_numpy(copy=True)

    stratum_of_psu = pd.Series(totals.index.get_level_values(0))
    n_h = stratum_of_psu.map(stratum_of_psu.value_counts()).to_numpy()
    center = totals.groupby(level=0).transform('mean').to_numpy(copy=True)

    lonely = n_h == 1
    if lonely.any():
        n_lonely = int(lonely.sum())
        if lonely_psu == 'error':
            raise DesignDegeneracyError(
                f"{n_lonely} stratum/strata contain a single PSU; "
                "use lonely_psu='remove' or 'adjust'"
            )
        elif lonely_psu == 'adjust':
            center[lonely] = t.mean(axis=0)
        else:
            center[lonely] = t[lonely]
            warnings.warn(
                f"{n_lonely} stratum/strata with a single PSU removed "
                "from variance estimation"
            )

    scale = np.where(lonely, 1.0, n_h / np.maximum(n_h - 1, 1))
    dev = t - center
    cov = (dev * scale[:, np.newaxis]).T @ dev

    if vector:
        return float(cov[0, 0])
    return cov
