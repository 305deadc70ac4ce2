"""
Recoding of Understanding Society variables for the analysis.

Pure lookups from raw categories to analysis groups. Nothing falls through
silently: values outside the known codes map to UNCLASSIFIED and
non-response codes map to MISSING.
"""

import math
import re
import warnings
from typing import Optional

import pandas as pd


MISSING = "Missing"
UNCLASSIFIED = "Unclassified"

# Understanding Society non-response codes
NONRESPONSE = ("missing", "inapplicable", "refusal", "don't know")

# Detailed ethnicity: small groups pooled, mixed backgrounds pooled
ETHNICITY = {
    "british/english/scottish/welsh/northern irish": "british/english/scottish/welsh/northern irish",
    "irish": "irish",
    "any other white background": "any other white background",
    "gypsy or irish traveller": "any other ethnic group",
    "white and black caribbean": "mixed",
    "white and black african": "mixed",
    "white and asian": "mixed",
    "any other mixed background": "mixed",
    "indian": "indian",
    "pakistani": "pakistani",
    "bangladeshi": "bangladeshi",
    "chinese": "any other ethnic group",
    "any other asian background": "any other ethnic group",
    "caribbean": "caribbean",
    "african": "african",
    "any other black background": "any other ethnic group",
    "arab": "any other ethnic group",
    "any other ethnic group": "any other ethnic group",
}

BROAD_ETHNIC_GROUP = {
    "british/english/scottish/welsh/northern irish": "White",
    "irish": "White",
    "any other white background": "White",
    "gypsy or irish traveller": "Other",
    "white and black caribbean": "Other",
    "white and black african": "Other",
    "white and asian": "Other",
    "any other mixed background": "Other",
    "indian": "South Asian",
    "pakistani": "South Asian",
    "bangladeshi": "South Asian",
    "chinese": "Other",
    "any other asian background": "Other",
    "caribbean": "Black",
    "african": "Black",
    "any other black background": "Black",
    "arab": "Other",
    "any other ethnic group": "Other",
}

BROAD_ETHNIC_GROUPS = ("White", "South Asian", "Black", "Other")

MIN_AGE = 16
OPEN_BAND = 85


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value)) \
        or value is pd.NA or value is pd.NaT


def _lookup(raw, table) -> str:
    if _is_missing(raw):
        return MISSING
    key = str(raw).strip().lower()
    if key in NONRESPONSE:
        return MISSING
    return table.get(key, UNCLASSIFIED)


def ethnicity(raw) -> str:
    """Detailed ethnic group of a raw j_ethn_dv category."""
    return _lookup(raw, ETHNICITY)


def broad_ethnic_group(raw) -> str:
    """Broad ethnic group (White, South Asian, Black, Other) of a raw category."""
    return _lookup(raw, BROAD_ETHNIC_GROUP)


def age_band(age) -> Optional[str]:
    """
    Five-year age band: '16-19', '20-24', ..., '80-84', '85+'.

    Missing ages give None; ages below 16 give UNCLASSIFIED.
    """
    if _is_missing(age):
        return None
    age = int(age)
    if age < MIN_AGE:
        return UNCLASSIFIED
    if age >= OPEN_BAND:
        return f"{OPEN_BAND}+"
    if age < 20:
        return "16-19"
    lower = age - age % 5
    return f"{lower}-{lower + 4}"


_BAND = re.compile(r'^(\d+)(?:-(\d+)|\+)$')


def age_band_midpoint(label: str) -> float:
    """
    Midpoint of an age band label, for plotting observed means on an age
    axis. The open band '85+' maps to its lower bound.
    """
    match = _BAND.match(str(label).replace(" years old", "").strip())
    if match is None:
        raise ValueError(f"Not an age band: {label!r}")
    lower = int(match.group(1))
    upper = int(match.group(2)) if match.group(2) else lower
    return lower + (upper - lower) / 2


def exclude_inapplicable_weights(data: pd.DataFrame, weight_field: str) -> pd.DataFrame:
    """
    Drop records whose weight is missing or not positive.

    Cross-sectional weights are zero for respondents outside the weighted
    population, so those records cannot enter a design.
    """
    weights = pd.to_numeric(data[weight_field], errors='coerce')
    keep = weights.notna() & (weights > 0)
    n_dropped = int((~keep).sum())
    if n_dropped:
        warnings.warn(
            f"{n_dropped} record(s) with missing or non-positive '{weight_field}' dropped"
        )
    return data.loc[keep].copy()


def add_analysis_columns(
    data: pd.DataFrame,
    age_field: str = "j_age_dv",
    ethnicity_field: str = "j_ethn_dv",
) -> pd.DataFrame:
    """
    Return a copy of `data` with the analysis variables added:
    'age' (numeric), 'age_group', 'ethnicity', 'broad_ethnic_group'.
    """
    out = data.copy()
    age = out[age_field]
    if isinstance(age.dtype, pd.CategoricalDtype) or age.dtype == object:
        # Labelled codes such as "45" or "refusal"
        age = age.astype(str)
    out["age"] = pd.to_numeric(age, errors="coerce").astype(float)
    out["age_group"] = out["age"].map(age_band)
    out["ethnicity"] = out[ethnicity_field].map(ethnicity)
    out["broad_ethnic_group"] = out[ethnicity_field].map(broad_ethnic_group)
    return out


