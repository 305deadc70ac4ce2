"""
Complex survey designs.

A design binds a dataset to its weight, cluster (PSU) and stratum variables,
like R's svydesign(ids=~psu, strata=~strata, weights=~wt).
"""

from typing import Callable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ._utils import check_fields
from .exceptions import EmptyDesignError, InvalidDesignError


LONELY_PSU_POLICIES = ('remove', 'adjust', 'error')

Predicate = Union[np.ndarray, pd.Series, Sequence[bool],
                  Callable[[pd.DataFrame], Union[np.ndarray, pd.Series]]]


class SurveyDesign:
    """
    Stratified, clustered, weighted sample design.

    Instances are immutable. Build them with :func:`create` and narrow them
    with :meth:`subset`, which returns a new design.

    Subsetting restricts the records an estimate is computed on (the
    domain), but the full set of clusters and strata is kept so that
    variance estimates for a subset match those of the same group in the
    parent design.

    Parameters
    ----------
    frame : DataFrame
        All records of the parent design
    weight_field, cluster_field, stratum_field : str
        Design bindings
    lonely_psu : {'remove', 'adjust', 'error'}
        Treatment of strata that contain a single cluster
    domain : ndarray of bool, optional
        Records of `frame` visible in this design
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        weight_field: str,
        cluster_field: str,
        stratum_field: str,
        lonely_psu: str = 'remove',
        domain: Optional[np.ndarray] = None,
    ):
        self._frame = frame
        self._weight_field = weight_field
        self._cluster_field = cluster_field
        self._stratum_field = stratum_field
        self._lonely_psu = lonely_psu
        if domain is None:
            domain = np.ones(len(frame), dtype=bool)
        self._domain = domain
        self._domain.setflags(write=False)

    # Bindings

    @property
    def weight_field(self) -> str:
        return self._weight_field

    @property
    def cluster_field(self) -> str:
        return self._cluster_field

    @property
    def stratum_field(self) -> str:
        return self._stratum_field

    @property
    def lonely_psu(self) -> str:
        return self._lonely_psu

    # Records

    @property
    def data(self) -> pd.DataFrame:
        """Records in this design (a copy, safe to modify)."""
        return self._frame.loc[self._domain].copy()

    @property
    def weights(self) -> pd.Series:
        """Sampling weights of the records in this design."""
        return self._frame.loc[self._domain, self._weight_field].astype(float)

    def __len__(self) -> int:
        return int(self._domain.sum())

    @property
    def n_clusters(self) -> int:
        """Clusters with at least one record in this design."""
        visible = self._frame.loc[self._domain]
        return int(visible.groupby(
            [self._stratum_field, self._cluster_field], sort=False
        ).ngroups)

    @property
    def n_strata(self) -> int:
        """Strata with at least one record in this design."""
        return int(self._frame.loc[self._domain, self._stratum_field].nunique())

    def degf(self) -> int:
        """Design degrees of freedom: clusters minus strata."""
        return self.n_clusters - self.n_strata

    # Internal accessors for the estimators. They cover the parent's full
    # record set; out-of-domain records must contribute zero.

    def _column(self, field: str) -> pd.Series:
        return self._frame[field]

    def _sampling_weights(self) -> np.ndarray:
        return self._frame[self._weight_field].to_numpy(dtype=np.float64)

    def _clusters(self) -> np.ndarray:
        return self._frame[self._cluster_field].to_numpy()

    def _strata(self) -> np.ndarray:
        return self._frame[self._stratum_field].to_numpy()

    def _complete_cases(self, fields) -> np.ndarray:
        """Domain records with no missing value in `fields`."""
        mask = self._domain.copy()
        for field in fields:
            mask &= self._frame[field].notna().to_numpy()
        return mask

    # Derivation

    def _replace(self, **changes) -> 'SurveyDesign':
        kwargs = dict(
            frame=self._frame,
            weight_field=self._weight_field,
            cluster_field=self._cluster_field,
            stratum_field=self._stratum_field,
            lonely_psu=self._lonely_psu,
            domain=self._domain.copy(),
        )
        kwargs.update(changes)
        return SurveyDesign(**kwargs)

    def subset(self, predicate: Predicate) -> 'SurveyDesign':
        """See :func:`subset`."""
        return subset(self, predicate)

    def with_lonely_psu(self, policy: str) -> 'SurveyDesign':
        """Copy of this design with a different lonely-PSU policy."""
        _check_policy(policy)
        return self._replace(lonely_psu=policy)

    def __repr__(self):
        return (
            f"SurveyDesign(n={len(self)}, clusters={self.n_clusters}, "
            f"strata={self.n_strata}, weights='{self._weight_field}', "
            f"lonely_psu='{self._lonely_psu}')"
        )


def _check_policy(policy: str):
    if policy not in LONELY_PSU_POLICIES:
        raise InvalidDesignError(
            f"Unknown lonely PSU policy: '{policy}'\n"
            f"Valid options: {', '.join(repr(p) for p in LONELY_PSU_POLICIES)}"
        )


def create(
    data: pd.DataFrame,
    weight_field: str,
    cluster_field: str,
    stratum_field: str,
    lonely_psu: str = 'remove',
) -> SurveyDesign:
    """
    Create a survey design.

    Parameters
    ----------
    data : DataFrame
        Observation table
    weight_field : str
        Column of sampling weights (all > 0)
    cluster_field : str
        Column of cluster (PSU) identifiers. Clusters are nested within
        strata, so the same id may be reused in different strata.
    stratum_field : str
        Column of stratum identifiers
    lonely_psu : {'remove', 'adjust', 'error'}, default='remove'
        What a stratum with a single cluster contributes to variances:
        - 'remove': nothing
        - 'adjust': its deviation from the mean of all cluster totals
        - 'error': raise DesignDegeneracyError

    Returns
    -------
    SurveyDesign

    Raises
    ------
    InvalidDesignError
        Field absent, weight missing/non-positive, id missing, or unknown
        policy.

    Examples
    --------
    >>> design = create(df, weight_field='j_indinui_xw',
    ...                 cluster_field='j_psu', stratum_field='j_strata')
    """
    if not isinstance(data, pd.DataFrame):
        data = pd.DataFrame(data)

    check_fields(data, [weight_field, cluster_field, stratum_field],
                 error=InvalidDesignError, what='Design field')
    _check_policy(lonely_psu)

    if len(data) == 0:
        raise EmptyDesignError("Cannot create a design from an empty dataset")

    weights = pd.to_numeric(data[weight_field], errors='coerce')
    bad = weights.isna() | ~np.isfinite(weights.fillna(0.0))
    if bad.any():
        raise InvalidDesignError(
            f"{int(bad.sum())} missing or non-numeric weight(s) in '{weight_field}'"
        )
    if (weights <= 0).any():
        raise InvalidDesignError(
            f"{int((weights <= 0).sum())} weight(s) <= 0 in '{weight_field}'; "
            "drop inapplicable records before building the design"
        )

    for field in (cluster_field, stratum_field):
        n_missing = int(data[field].isna().sum())
        if n_missing:
            raise InvalidDesignError(f"{n_missing} missing value(s) in '{field}'")

    frame = data.copy()
    frame[weight_field] = weights.astype(np.float64)

    return SurveyDesign(
        frame,
        weight_field=weight_field,
        cluster_field=cluster_field,
        stratum_field=stratum_field,
        lonely_psu=lonely_psu,
    )


def subset(design: SurveyDesign, predicate: Predicate) -> SurveyDesign:
    """
    Restrict a design to the records satisfying `predicate`.

    Parameters
    ----------
    design : SurveyDesign
    predicate : array-like of bool or callable
        Boolean mask aligned with ``design.data``, or a function taking
        ``design.data`` and returning one. Missing values count as False.

    Returns
    -------
    SurveyDesign
        New design; `design` is unchanged.

    Raises
    ------
    EmptyDesignError
        If no record satisfies the predicate.
    """
    visible = design.data
    mask = predicate(visible) if callable(predicate) else predicate

    if isinstance(mask, pd.Series):
        if not mask.index.equals(visible.index):
            mask = mask.reindex(visible.index)
        mask = mask.fillna(False).to_numpy(dtype=bool)
    else:
        mask = np.asarray(mask)
        if mask.dtype != bool:
            mask = pd.Series(mask).fillna(False).to_numpy(dtype=bool)

    if mask.shape != (len(visible),):
        raise ValueError(
            f"Predicate must give one value per record: "
            f"got shape {mask.shape}, expected ({len(visible)},)"
        )

    domain = design._domain.copy()
    positions = np.flatnonzero(domain)
    domain[positions[~mask]] = False

    if not domain.any():
        raise EmptyDesignError("No records satisfy the subset predicate")

    return design._replace(domain=domain)
