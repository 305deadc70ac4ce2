"""
Condition counts by age and ethnic group.

Runs the full analysis on a prepared Understanding Society extract:

1. build the survey design and restrict it to records with a valid age
   and ethnic group
2. observed weighted mean condition counts by age band (and by age band
   within ethnic group)
3. one survey quasi-Poisson model per specification
4. predicted counts over single years of age, per ethnic group where the
   model includes it

Every model specification runs independently: one that fails is recorded
with its error and the others still run.
"""

import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .design import SurveyDesign, create, subset
from .estimate import weighted_mean
from .exceptions import SurveyError
from .formula import Categorical, FormulaBuilder, ModelFormula, Term
from .glm import FittedModel, fit_quasipoisson
from .predict import datagrid, predict
from .recode import MISSING, UNCLASSIFIED, age_band_midpoint


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Configuration for the condition count analysis.

    Attributes:
        # Variables
        outcome_field: Count of long-term conditions
        age_field: Numeric age
        age_group_field: Age band label (see recode.age_band)
        group_field: Ethnic grouping used in models and tables
        reference_group: Reference level of `group_field` in models
        exclude_groups: Levels of `group_field` left out of the analysis

        # Survey design
        weight_field: Cross-sectional individual weight
        cluster_field: Primary sampling unit
        stratum_field: Sampling stratum
        lonely_psu: Single-PSU strata policy ('remove', 'adjust', 'error')

        # Inference
        level: Confidence level for all intervals
        interval: Reference distribution for observed means ('normal', 't')

        # Prediction grid
        min_age, max_age: Ages (inclusive) to predict for

        # IRLS
        maxit: Maximum iterations
        epsilon: Convergence tolerance
    """
    # Variables
    outcome_field: str = 'condition_count'
    age_field: str = 'age'
    age_group_field: str = 'age_group'
    group_field: str = 'broad_ethnic_group'
    reference_group: Optional[str] = 'White'
    exclude_groups: Tuple[str, ...] = (MISSING, UNCLASSIFIED)

    # Survey design (Understanding Society Wave 10)
    weight_field: str = 'j_indinui_xw'
    cluster_field: str = 'j_psu'
    stratum_field: str = 'j_strata'
    lonely_psu: str = 'remove'

    # Inference
    level: float = 0.95
    interval: str = 'normal'

    # Prediction grid
    min_age: int = 16
    max_age: int = 90

    # IRLS
    maxit: int = 25
    epsilon: float = 1e-8


@dataclass(frozen=True)
class ModelSpec:
    """A named list of right-hand side terms."""
    name: str
    terms: Tuple[Union[str, Term], ...]
    description: str = ''

    @property
    def formula(self) -> ModelFormula:
        return ModelFormula(self.terms)


def default_models(config: Optional[AnalysisConfig] = None) -> List[ModelSpec]:
    """
    Models m1-m5, each extending the previous one:

    m1  age
    m2  age + age²
    m3  m2 + ethnic group
    m4  m3 + age × ethnic group
    m5  m4 + age² × ethnic group
    """
    config = config or AnalysisConfig()
    age = config.age_field
    group = Categorical(config.group_field, reference=config.reference_group)

    m1 = FormulaBuilder().poly(age, 1)
    m2 = FormulaBuilder().poly(age, 2)
    m3 = FormulaBuilder().poly(age, 2).term(group)
    m4 = FormulaBuilder().poly(age, 2).term(group).interact(age, group)
    m5 = (FormulaBuilder().poly(age, 2).term(group)
          .interact(age, group).interact(f"{age}^2", group))

    return [
        ModelSpec('m1', m1.build().terms, 'Linear age'),
        ModelSpec('m2', m2.build().terms, 'Quadratic age'),
        ModelSpec('m3', m3.build().terms, 'Quadratic age, ethnic group'),
        ModelSpec('m4', m4.build().terms, 'Quadratic age, ethnic group, linear interaction'),
        ModelSpec('m5', m5.build().terms, 'Quadratic age, ethnic group, quadratic interaction'),
    ]


@dataclass(frozen=True)
class ModelRun:
    """Outcome of one model specification."""
    spec: ModelSpec
    model: Optional[FittedModel] = None
    predictions: Optional[pd.DataFrame] = None
    error: Optional[SurveyError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AnalysisResult:
    """Everything the plotting/reporting layer needs."""
    config: AnalysisConfig
    design: SurveyDesign
    observed: Dict[str, pd.DataFrame] = field(default_factory=dict)
    models: Dict[str, ModelRun] = field(default_factory=dict)

    @property
    def n_obs(self) -> int:
        """Records with a valid age and ethnic group."""
        return len(self.design)

    @property
    def failed(self) -> List[str]:
        return [name for name, run in self.models.items() if not run.ok]

    def summary(self):
        """Print an overview of the observed tables and model runs."""
        print()
        print("=" * 80)
        print("CONDITION COUNTS BY AGE AND ETHNIC GROUP")
        print("=" * 80)
        print()
        print(f"Design: {self.design!r}")
        print(f"Valid observations: {self.n_obs}")
        print()
        for name, table in self.observed.items():
            print(f"Observed means ({name}): {len(table)} rows")
        print()
        print(f"{'Model':<6} {'Terms':<50} {'Status':>20}")
        print("-" * 80)
        for name, run in self.models.items():
            terms = str(run.spec.formula)
            status = "ok" if run.ok else type(run.error).__name__
            print(f"{name:<6} {terms:<50.50} {status:>20}")
        print("=" * 80)
        print()


def _midpoint(label) -> float:
    try:
        return age_band_midpoint(label)
    except ValueError:
        return np.nan


def run_model(
    design: SurveyDesign,
    spec: ModelSpec,
    config: AnalysisConfig,
) -> ModelRun:
    """
    Fit one specification and predict over the age grid.

    Structural errors (SurveyError) are captured on the returned run and
    reported with a RuntimeWarning.
    """
    try:
        model = fit_quasipoisson(
            design, spec.formula, config.outcome_field,
            maxit=config.maxit, epsilon=config.epsilon,
        )
        values = {config.age_field: range(config.min_age, config.max_age + 1)}
        for factor in model.formula.factors:
            if factor.name == config.group_field:
                values[factor.name] = list(factor.levels)
        grid = datagrid(model, **values)
        predictions = predict(model, grid, level=config.level)
    except SurveyError as exc:
        warnings.warn(
            f"Model {spec.name} failed: {type(exc).__name__}: {exc}",
            RuntimeWarning,
        )
        return ModelRun(spec=spec, error=exc)

    return ModelRun(spec=spec, model=model, predictions=predictions)


def run_analysis(
    data: pd.DataFrame,
    config: Optional[AnalysisConfig] = None,
    models: Optional[Sequence[ModelSpec]] = None,
) -> AnalysisResult:
    """
    Run the analysis.

    Parameters
    ----------
    data : DataFrame
        Prepared records (see recode.add_analysis_columns and
        recode.exclude_inapplicable_weights)
    config : AnalysisConfig, optional
    models : list of ModelSpec, optional
        Defaults to default_models(config)

    Returns
    -------
    AnalysisResult

    Raises
    ------
    InvalidDesignError, EmptyDesignError
        The design itself cannot be built; nothing else can run.
    """
    config = config or AnalysisConfig()
    models = list(models) if models is not None else default_models(config)

    design = create(
        data,
        weight_field=config.weight_field,
        cluster_field=config.cluster_field,
        stratum_field=config.stratum_field,
        lonely_psu=config.lonely_psu,
    )

    age, group = config.age_field, config.group_field
    design = subset(
        design,
        lambda d: d[age].notna() & d[group].notna() & ~d[group].isin(config.exclude_groups),
    )

    by_age = weighted_mean(
        design, config.outcome_field, config.age_group_field,
        level=config.level, interval=config.interval,
    )
    by_age[age] = by_age[config.age_group_field].map(_midpoint)

    by_age_group = weighted_mean(
        design, config.outcome_field, [config.age_group_field, group],
        level=config.level, interval=config.interval,
    )
    by_age_group[age] = by_age_group[config.age_group_field].map(_midpoint)

    runs = {}
    for spec in models:
        runs[spec.name] = run_model(design, spec, config)

    return AnalysisResult(
        config=config,
        design=design,
        observed={'age_group': by_age, 'age_group_by_ethnic_group': by_age_group},
        models=runs,
    )
