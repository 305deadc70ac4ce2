"""
Model-based predictions with delta-method confidence intervals.

The equivalent of marginaleffects::predictions(model, newdata=datagrid(...))
for survey GLMs.
"""

from collections.abc import Iterable

import numpy as np
import pandas as pd

from ._utils import critical_value
from .exceptions import UnknownTermError
from .glm import FittedModel


def predict(
    model: FittedModel,
    grid: pd.DataFrame,
    level: float = 0.95,
) -> pd.DataFrame:
    """
    Predict the response for each row of a covariate grid.

    For each row x (expanded exactly as in fitting):

        eta      = x · β
        se_eta   = sqrt(x' Cov x)          (design-based Cov)
        estimate = g⁻¹(eta)
        CI       = g⁻¹(eta ± z se_eta)

    The interval is computed on the link scale and transformed, so it is
    asymmetric on the response scale and always contains the estimate.

    Parameters
    ----------
    model : FittedModel
    grid : DataFrame
        One row per covariate combination
    level : float, default=0.95
        Confidence level (z = 1.959964 at 0.95)

    Returns
    -------
    DataFrame
        The grid columns plus 'eta', 'se_link', 'estimate', 'ci_lower',
        'ci_upper'.

    Raises
    ------
    UnknownTermError
        Grid lacks a covariate the model needs, has a missing value in one,
        or holds a categorical level not seen in fitting.
    """
    if not isinstance(grid, pd.DataFrame):
        grid = pd.DataFrame(grid)

    bound = model.formula
    absent = [f for f in bound.fields if f not in grid.columns]
    if absent:
        raise UnknownTermError(
            "Prediction grid is missing covariate(s) required by the model: "
            + ", ".join(repr(f) for f in absent)
        )
    incomplete = [f for f in bound.fields if grid[f].isna().any()]
    if incomplete:
        raise UnknownTermError(
            "Prediction grid has missing values in covariate(s): "
            + ", ".join(repr(f) for f in incomplete)
        )

    X = bound.matrix(grid)
    eta = X @ model.coefficients
    # Row-wise x' Cov x
    var_eta = np.einsum('ij,jk,ik->i', X, model.cov, X)
    se_eta = np.sqrt(np.maximum(var_eta, 0.0))

    z = critical_value(level)
    linkinv = model.family.linkinv

    out = grid.copy()
    out['eta'] = eta
    out['se_link'] = se_eta
    out['estimate'] = linkinv(eta)
    out['ci_lower'] = linkinv(eta - z * se_eta)
    out['ci_upper'] = linkinv(eta + z * se_eta)
    out.attrs['level'] = level
    return out


def _as_values(value) -> list:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return [value]
    return list(value)


def datagrid(model: FittedModel, **values) -> pd.DataFrame:
    """
    Build a prediction grid for a fitted model.

    Covariates given as keyword arguments take every listed value (the grid
    is their Cartesian product); all other covariates are held at their
    typical value in the fitting data (weighted mean for numeric fields,
    most frequent level for categorical ones).

    Examples
    --------
    >>> datagrid(m5, age=range(16, 91),
    ...          broad_ethnic_group=['White', 'Black', 'South Asian'])
    """
    fields = list(model.formula.fields)
    unknown = [name for name in values if name not in fields]
    if unknown:
        raise UnknownTermError(
            "Not covariate(s) of the model: " + ", ".join(repr(u) for u in unknown)
        )
    if not fields:
        return pd.DataFrame(index=pd.RangeIndex(1))

    axes = [
        _as_values(values[name]) if name in values else [model.typical[name]]
        for name in fields
    ]
    return pd.MultiIndex.from_product(axes, names=fields).to_frame(index=False)
