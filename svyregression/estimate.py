"""
Design-based means and totals.

The user-facing equivalent of R's svymean/svytotal, with svyby-style
grouping.
"""

import warnings
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ._core.variance import stratified_cluster_variance
from ._utils import check_fields, critical_value
from .design import SurveyDesign
from .exceptions import DesignDegeneracyError, EmptyDesignError


NA_POLICIES = ('drop', 'keep')
INTERVALS = ('normal', 't')


def weighted_mean(
    design: SurveyDesign,
    outcome_field: str,
    group_fields: Optional[Union[str, Sequence[str]]] = None,
    na_policy: str = 'drop',
    level: float = 0.95,
    interval: str = 'normal',
) -> pd.DataFrame:
    """
    Weighted mean of a variable, optionally by group, with design-based CIs.

    Parameters
    ----------
    design : SurveyDesign
    outcome_field : str
        Numeric variable to average
    group_fields : str or list of str, optional
        Grouping variables; one row per observed combination
    na_policy : {'drop', 'keep'}, default='drop'
        - 'drop': records missing the outcome or a group value are left
          out of the estimate (and never form a group of their own)
        - 'keep': missing group values form their own group, and a group
          containing a missing outcome gets NaN statistics
    level : float, default=0.95
        Confidence level
    interval : {'normal', 't'}, default='normal'
        Reference distribution for the critical value. 't' uses the design
        degrees of freedom (clusters minus strata).

    Returns
    -------
    DataFrame
        Group columns, then 'mean', 'se', 'ci_lower', 'ci_upper' and 'n'
        (unweighted number of records).

    Examples
    --------
    >>> weighted_mean(design, 'condition_count', group_fields='age_group')
    """
    return _estimate(design, outcome_field, group_fields, na_policy,
                     level, interval, statistic='mean')


def weighted_total(
    design: SurveyDesign,
    outcome_field: str,
    group_fields: Optional[Union[str, Sequence[str]]] = None,
    na_policy: str = 'drop',
    level: float = 0.95,
    interval: str = 'normal',
) -> pd.DataFrame:
    """
    Weighted (population) total, optionally by group.

    Same arguments as :func:`weighted_mean`; the estimate column is
    'total'.
    """
    return _estimate(design, outcome_field, group_fields, na_policy,
                     level, interval, statistic='total')


def _as_list(fields) -> List[str]:
    if fields is None:
        return []
    if isinstance(fields, str):
        return [fields]
    return list(fields)


def _estimate(design, outcome_field, group_fields, na_policy, level,
              interval, statistic):
    group_fields = _as_list(group_fields)

    if na_policy not in NA_POLICIES:
        raise ValueError(
            f"Unknown na_policy: '{na_policy}'\n"
            f"Valid options: {', '.join(repr(p) for p in NA_POLICIES)}"
        )
    if interval not in INTERVALS:
        raise ValueError(
            f"Unknown interval: '{interval}'\n"
            f"Valid options: {', '.join(repr(i) for i in INTERVALS)}"
        )
    check_fields(design._frame, [outcome_field] + group_fields)

    q = _critical(design, level, interval)

    y = pd.to_numeric(design._column(outcome_field)).to_numpy(dtype=np.float64)
    w = design._sampling_weights()
    clusters = design._clusters()
    strata = design._strata()

    if na_policy == 'drop':
        usable = design._complete_cases([outcome_field] + group_fields)
        n_excluded = len(design) - int(usable.sum())
        if n_excluded:
            warnings.warn(
                f"{n_excluded} record(s) with missing '{outcome_field}'"
                + (f" or {', '.join(group_fields)}" if group_fields else "")
                + " excluded from this estimate"
            )
    else:
        usable = design._domain.copy()

    if not usable.any():
        raise EmptyDesignError(
            f"No records available to estimate '{outcome_field}'"
        )

    positions = np.flatnonzero(usable)
    if group_fields:
        keys = design._frame.loc[usable, group_fields]
        codes = keys.groupby(
            group_fields, sort=True, dropna=(na_policy == 'drop')
        ).ngroup().to_numpy()
        groups = []
        for code in range(int(np.nanmax(codes)) + 1):
            in_group = codes == code
            first = np.flatnonzero(in_group)[0]
            key = dict(zip(group_fields, keys.iloc[first].tolist()))
            groups.append((key, positions[in_group]))
    else:
        groups = [({}, positions)]

    rows = []
    for key, members in groups:
        member = np.zeros(len(y), dtype=bool)
        member[members] = True
        est, se = _linearized(y, w, member, clusters, strata,
                              design.lonely_psu, statistic)
        row = dict(key)
        row[statistic] = est
        row['se'] = se
        row['ci_lower'] = est - q * se
        row['ci_upper'] = est + q * se
        row['n'] = len(members)
        rows.append(row)

    result = pd.DataFrame(
        rows, columns=group_fields + [statistic, 'se', 'ci_lower', 'ci_upper', 'n']
    )
    result.attrs['level'] = level
    result.attrs['interval'] = interval
    return result


def _critical(design, level, interval):
    if interval == 'normal':
        return critical_value(level)
    df = design.degf()
    if df <= 0:
        raise DesignDegeneracyError(
            f"Design has {df} degrees of freedom; t interval undefined"
        )
    return critical_value(level, df=df)


def _linearized(y, w, member, clusters, strata, lonely_psu, statistic):
    """Point estimate and linearized SE for one domain."""
    if np.isnan(y[member]).any():
        return np.nan, np.nan

    w_d = np.where(member, w, 0.0)
    y_d = np.where(member, y, 0.0)

    if statistic == 'mean':
        total_weight = w_d.sum()
        est = float(np.sum(w_d * y_d) / total_weight)
        # Influence function of the ratio sum(w y) / sum(w)
        infl = w_d * (y_d - est) / total_weight
    else:
        est = float(np.sum(w_d * y_d))
        infl = w_d * y_d

    var = stratified_cluster_variance(infl, clusters, strata, lonely_psu)
    return est, float(np.sqrt(var))
