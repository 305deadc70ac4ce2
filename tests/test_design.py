"""
Test survey design construction and subsetting.
"""

import numpy as np
import pandas as pd
import pytest

from svyregression import (
    EmptyDesignError,
    InvalidDesignError,
    SurveyDesign,
    create,
    subset,
)

from conftest import fixture_frame, load_fixture


def _frame(**overrides):
    df = fixture_frame("two_strata")
    for column, values in overrides.items():
        df[column] = values
    return df


class TestCreate:
    """Validation happens when the design is built."""

    def test_valid_design(self, two_strata_design):
        design = two_strata_design
        assert isinstance(design, SurveyDesign)
        assert len(design) == 6
        assert design.n_clusters == 4
        assert design.n_strata == 2
        assert design.degf() == load_fixture("two_strata")["degf"]
        assert design.lonely_psu == 'remove'
        assert design.weight_field == 'weight'
        assert design.cluster_field == 'cluster'
        assert design.stratum_field == 'stratum'

    def test_missing_field(self):
        with pytest.raises(InvalidDesignError, match="psu"):
            create(_frame(), weight_field='weight', cluster_field='psu',
                   stratum_field='stratum')

    @pytest.mark.parametrize("bad_weight", [0.0, -1.0, np.nan, np.inf])
    def test_bad_weight(self, bad_weight):
        weights = [1.0, 1.0, bad_weight, 1.0, 1.0, 1.0]
        with pytest.raises(InvalidDesignError):
            create(_frame(weight=weights), 'weight', 'cluster', 'stratum')

    def test_non_numeric_weight(self):
        weights = ['1', '1', 'heavy', '1', '1', '1']
        with pytest.raises(InvalidDesignError, match="non-numeric"):
            create(_frame(weight=weights), 'weight', 'cluster', 'stratum')

    def test_missing_cluster_id(self):
        clusters = ['a', 'a', None, 'c', 'd', 'd']
        with pytest.raises(InvalidDesignError, match="cluster"):
            create(_frame(cluster=clusters), 'weight', 'cluster', 'stratum')

    def test_unknown_policy(self):
        with pytest.raises(InvalidDesignError, match="lonely PSU"):
            create(_frame(), 'weight', 'cluster', 'stratum', lonely_psu='certainty')

    def test_empty_data(self):
        with pytest.raises(EmptyDesignError):
            create(_frame().iloc[0:0], 'weight', 'cluster', 'stratum')

    def test_input_not_modified(self):
        df = _frame(weight=[1, 1, 2, 1, 1, 1])
        create(df, 'weight', 'cluster', 'stratum')
        assert df['weight'].dtype.kind == 'i'

    def test_cluster_ids_nested_in_strata(self):
        # Same cluster label in two strata means two clusters
        df = _frame(cluster=['a', 'a', 'b', 'a', 'b', 'b'])
        design = create(df, 'weight', 'cluster', 'stratum')
        assert design.n_clusters == 4


class TestSubset:
    """Subsetting returns new designs and never mutates."""

    def test_boolean_series(self, two_strata_design):
        data = two_strata_design.data
        sub = subset(two_strata_design, data['stratum'] == 2)
        assert len(sub) == 3
        assert len(two_strata_design) == 6
        assert sub is not two_strata_design
        assert set(sub.data['cluster']) == {'c', 'd'}

    def test_callable(self, two_strata_design):
        sub = two_strata_design.subset(lambda d: d['condition_count'] >= 2)
        assert sorted(sub.data['condition_count']) == [2, 2, 3, 4]

    def test_array(self, two_strata_design):
        mask = np.array([True, False, True, False, True, False])
        sub = subset(two_strata_design, mask)
        assert len(sub) == 3

    def test_missing_counts_as_false(self, two_strata_design):
        mask = pd.Series([True, None, True, np.nan, True, True],
                         index=two_strata_design.data.index)
        assert len(subset(two_strata_design, mask)) == 4

    def test_preserves_bindings(self, two_strata_design):
        design = two_strata_design.with_lonely_psu('adjust')
        sub = subset(design, design.data['stratum'] == 1)
        assert sub.weight_field == 'weight'
        assert sub.cluster_field == 'cluster'
        assert sub.stratum_field == 'stratum'
        assert sub.lonely_psu == 'adjust'

    def test_nested_subsets(self, two_strata_design):
        sub = subset(two_strata_design, lambda d: d['stratum'] == 2)
        subsub = subset(sub, lambda d: d['cluster'] == 'd')
        assert len(subsub) == 2
        assert len(sub) == 3

    def test_empty_subset(self, two_strata_design):
        with pytest.raises(EmptyDesignError):
            subset(two_strata_design, lambda d: d['condition_count'] > 100)

    def test_wrong_length(self, two_strata_design):
        with pytest.raises(ValueError):
            subset(two_strata_design, np.array([True, False]))

    def test_degf_counts_visible_clusters(self, two_strata_design):
        sub = subset(two_strata_design, lambda d: d['stratum'] == 2)
        assert sub.degf() == 1


class TestImmutability:

    def test_data_is_a_copy(self, two_strata_design):
        data = two_strata_design.data
        data.loc[:, 'condition_count'] = 100
        assert two_strata_design.data['condition_count'].max() == 4

    def test_with_lonely_psu_returns_new_design(self, two_strata_design):
        adjusted = two_strata_design.with_lonely_psu('error')
        assert adjusted.lonely_psu == 'error'
        assert two_strata_design.lonely_psu == 'remove'

    def test_with_lonely_psu_rejects_unknown(self, two_strata_design):
        with pytest.raises(InvalidDesignError):
            two_strata_design.with_lonely_psu('scale')

    def test_weights(self, two_strata_design):
        np.testing.assert_array_equal(
            two_strata_design.weights.to_numpy(), [1, 1, 2, 1, 1, 1]
        )

    def test_repr(self, two_strata_design):
        text = repr(two_strata_design)
        assert 'n=6' in text
        assert 'clusters=4' in text
        assert "lonely_psu='remove'" in text
