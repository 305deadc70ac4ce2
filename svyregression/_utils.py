"""
Utility functions.
"""

import numpy as np
import pandas as pd
from scipy import stats


def check_array(X, name='X', dtype=np.float64):
    """Validate array input."""
    X = np.asarray(X, dtype=dtype)
    if X.ndim != 2:
        raise ValueError(f"{name} must be 2-dimensional")
    if not np.all(np.isfinite(X)):
        raise ValueError(f"{name} contains NaN or Inf")
    return X


def check_vector(y, name='y', dtype=np.float64):
    """Validate vector input."""
    y = np.asarray(y, dtype=dtype)
    if y.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional")
    if not np.all(np.isfinite(y)):
        raise ValueError(f"{name} contains NaN or Inf")
    return y


def check_fields(data: pd.DataFrame, fields, error=ValueError, what='Field'):
    """Raise `error` naming every field absent from `data`."""
    missing = [f for f in fields if f not in data.columns]
    if missing:
        raise error(
            f"{what}{'s' if len(missing) > 1 else ''} not found in data: "
            + ", ".join(repr(f) for f in missing)
        )


def critical_value(level: float = 0.95, df=None) -> float:
    """
    Two-sided critical value.

    Normal quantile when `df` is None, Student's t otherwise.
    """
    if not 0 < level < 1:
        raise ValueError(f"level must be in (0, 1), got {level}")
    q = 1 - (1 - level) / 2
    if df is None:
        return float(stats.norm.ppf(q))
    return float(stats.t.ppf(q, df))
