"""
Test recoding of raw survey variables.
"""

import numpy as np
import pandas as pd
import pytest

from svyregression.recode import (
    BROAD_ETHNIC_GROUP,
    BROAD_ETHNIC_GROUPS,
    ETHNICITY,
    MISSING,
    UNCLASSIFIED,
    add_analysis_columns,
    age_band,
    age_band_midpoint,
    broad_ethnic_group,
    ethnicity,
    exclude_inapplicable_weights,
)


class TestEthnicity:

    @pytest.mark.parametrize("raw, expected", [
        ("british/english/scottish/welsh/northern irish",
         "british/english/scottish/welsh/northern irish"),
        ("Indian", "indian"),
        ("chinese", "any other ethnic group"),
        ("white and asian", "mixed"),
        ("  caribbean ", "caribbean"),
    ])
    def test_detailed(self, raw, expected):
        assert ethnicity(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("irish", "White"),
        ("Pakistani", "South Asian"),
        ("bangladeshi", "South Asian"),
        ("african", "Black"),
        ("arab", "Other"),
        ("any other mixed background", "Other"),
    ])
    def test_broad(self, raw, expected):
        assert broad_ethnic_group(raw) == expected

    @pytest.mark.parametrize("raw", [None, np.nan, pd.NA, "refusal", "don't know",
                                     "Inapplicable", "missing"])
    def test_nonresponse_is_missing(self, raw):
        assert ethnicity(raw) == MISSING
        assert broad_ethnic_group(raw) == MISSING

    def test_unknown_is_unclassified(self):
        assert ethnicity("martian") == UNCLASSIFIED
        assert broad_ethnic_group("martian") == UNCLASSIFIED

    def test_tables_cover_same_categories(self):
        assert set(ETHNICITY) == set(BROAD_ETHNIC_GROUP)
        assert set(BROAD_ETHNIC_GROUP.values()) == set(BROAD_ETHNIC_GROUPS)


class TestAgeBand:

    @pytest.mark.parametrize("age, expected", [
        (16, "16-19"),
        (19, "16-19"),
        (20, "20-24"),
        (24.9, "20-24"),
        (67, "65-69"),
        (84, "80-84"),
        (85, "85+"),
        (101, "85+"),
    ])
    def test_bands(self, age, expected):
        assert age_band(age) == expected

    def test_under_sixteen(self):
        assert age_band(15) == UNCLASSIFIED

    @pytest.mark.parametrize("age", [None, np.nan])
    def test_missing(self, age):
        assert age_band(age) is None

    def test_fifteen_bands_cover_analysis_ages(self):
        bands = {age_band(a) for a in range(16, 91)}
        assert len(bands) == 15

    @pytest.mark.parametrize("label, expected", [
        ("16-19", 17.5),
        ("20-24", 22.0),
        ("80-84", 82.0),
        ("85+", 85.0),
        ("70-74 years old", 72.0),
    ])
    def test_midpoint(self, label, expected):
        assert age_band_midpoint(label) == expected

    @pytest.mark.parametrize("label", [MISSING, UNCLASSIFIED, "old"])
    def test_midpoint_rejects_non_bands(self, label):
        with pytest.raises(ValueError):
            age_band_midpoint(label)


class TestFrames:

    def test_exclude_inapplicable_weights(self):
        df = pd.DataFrame({'w': [1.0, 0.0, np.nan, 2.0, -1.0], 'x': range(5)})
        with pytest.warns(UserWarning, match="3 record"):
            kept = exclude_inapplicable_weights(df, 'w')
        assert list(kept['x']) == [0, 3]
        assert len(df) == 5

    def test_exclude_nothing_is_silent(self, recwarn):
        df = pd.DataFrame({'w': [1.0, 2.0]})
        kept = exclude_inapplicable_weights(df, 'w')
        assert len(kept) == 2
        assert len(recwarn) == 0

    def test_add_analysis_columns(self):
        raw = pd.DataFrame({
            'j_age_dv': ['45', 'refusal', 17],
            'j_ethn_dv': ['indian', 'irish', None],
        })
        out = add_analysis_columns(raw)

        np.testing.assert_array_equal(out['age'], [45.0, np.nan, 17.0])
        assert out['age_group'].iloc[0] == '45-49'
        assert pd.isna(out['age_group'].iloc[1])
        assert out['age_group'].iloc[2] == '16-19'
        assert list(out['broad_ethnic_group']) == ['South Asian', 'White', MISSING]
        assert list(out['ethnicity']) == ['indian', 'irish', MISSING]
        assert 'age' not in raw.columns

    def test_add_analysis_columns_numeric_age(self):
        raw = pd.DataFrame({'dv_age': [30, 86], 'eth': ['african', 'arab']})
        out = add_analysis_columns(raw, age_field='dv_age', ethnicity_field='eth')
        assert list(out['age_group']) == ['30-34', '85+']
        assert list(out['broad_ethnic_group']) == ['Black', 'Other']
