"""
svyregression: design-based estimation and survey GLMs.

Weighted, clustered, stratified means and quasi-Poisson regression with
linearized standard errors, following R's survey package.
"""

__version__ = "1.0.0"

# Import main user-facing API
from .design import SurveyDesign, create, subset
from .estimate import weighted_mean, weighted_total
from .formula import (
    Categorical,
    Field,
    FormulaBuilder,
    Interaction,
    ModelFormula,
    Power,
    parse_term,
)
from .glm import FittedModel, SurveyGLM, fit_quasipoisson
from .predict import datagrid, predict
from ._core.families import Family, Poisson, QuasiPoisson
from .exceptions import (
    ConvergenceError,
    DesignDegeneracyError,
    EmptyDesignError,
    InvalidDesignError,
    InvalidFormulaError,
    SingularMatrixError,
    SurveyError,
    UnknownTermError,
)

# Import backend utilities (for advanced users)
from ._backends import get_backend, list_available_backends

__all__ = [
    'SurveyDesign',
    'create',
    'subset',
    'weighted_mean',
    'weighted_total',
    'Field',
    'Power',
    'Categorical',
    'Interaction',
    'ModelFormula',
    'FormulaBuilder',
    'parse_term',
    'SurveyGLM',
    'FittedModel',
    'fit_quasipoisson',
    'predict',
    'datagrid',
    'Family',
    'Poisson',
    'QuasiPoisson',
    'SurveyError',
    'InvalidDesignError',
    'EmptyDesignError',
    'DesignDegeneracyError',
    'InvalidFormulaError',
    'ConvergenceError',
    'SingularMatrixError',
    'UnknownTermError',
    'get_backend',
    'list_available_backends',
]
