"""
Shared test data.
"""

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from svyregression import create
from svyregression.recode import age_band


GROUPS = ['White', 'South Asian', 'Black', 'Other']
GROUP_EFFECT = {'White': 0.0, 'South Asian': 0.25, 'Black': 0.1, 'Other': -0.1}

# Generating coefficients: log μ = b0 + b1 age + b2 age²
TRUE_COEF = np.array([-3.0, 0.06, -0.0002])


def load_fixture(name):
    """Load a test fixture from JSON."""
    fixture_path = Path(__file__).parent / "fixtures" / f"{name}.json"
    with open(fixture_path, 'r') as f:
        return json.load(f)


def fixture_frame(name):
    return pd.DataFrame(load_fixture(name)["records"])


def make_survey_data(
    n_strata=10,
    clusters_per_stratum=4,
    per_cluster=25,
    cluster_sd=0.2,
    group_effects=True,
    seed=20230318,
):
    """Simulated stratified cluster sample of condition counts."""
    rng = np.random.default_rng(seed)
    n_clusters = n_strata * clusters_per_stratum
    n = n_clusters * per_cluster

    cluster = np.repeat(np.arange(n_clusters), per_cluster)
    stratum = cluster // clusters_per_stratum
    age = rng.integers(16, 91, n)
    group = rng.choice(GROUPS, size=n, p=[0.7, 0.1, 0.1, 0.1])

    eta = TRUE_COEF[0] + TRUE_COEF[1] * age + TRUE_COEF[2] * age ** 2
    if group_effects:
        eta = eta + np.array([GROUP_EFFECT[g] for g in group])
    eta = eta + rng.normal(0, cluster_sd, n_clusters)[cluster]

    df = pd.DataFrame({
        'condition_count': rng.poisson(np.exp(eta)),
        'age': age.astype(float),
        'broad_ethnic_group': group,
        'j_psu': cluster,
        'j_strata': stratum,
        'j_indinui_xw': rng.uniform(0.5, 2.0, n),
    })
    df['age_group'] = df['age'].map(age_band)
    return df


@pytest.fixture
def survey_data():
    return make_survey_data()


@pytest.fixture
def survey_design(survey_data):
    return create(survey_data, weight_field='j_indinui_xw',
                  cluster_field='j_psu', stratum_field='j_strata')


@pytest.fixture
def six_records_design():
    return create(fixture_frame("six_records"), weight_field='weight',
                  cluster_field='cluster', stratum_field='stratum')


@pytest.fixture
def two_strata_design():
    return create(fixture_frame("two_strata"), weight_field='weight',
                  cluster_field='cluster', stratum_field='stratum')
