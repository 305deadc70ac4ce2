"""
Exception types.

Every error is raised to the caller as soon as it is detected. None of them
is transient, so nothing here is retried.
"""


class SurveyError(Exception):
    """Base class for all svyregression errors."""


class InvalidDesignError(SurveyError, ValueError):
    """Malformed survey design: missing fields, bad weights or ids, or
    outcome values outside the model family's support."""


class EmptyDesignError(SurveyError, ValueError):
    """Subsetting (or missing-value exclusion) left no records."""


class DesignDegeneracyError(SurveyError, ValueError):
    """The design carries no usable variance information."""


class InvalidFormulaError(SurveyError, ValueError):
    """Malformed or duplicate model terms."""


class ConvergenceError(SurveyError, RuntimeError):
    """IRLS did not converge within the iteration budget."""

    def __init__(self, message, iterations=None, coef=None):
        super().__init__(message)
        self.iterations = iterations
        self.coef = coef


class SingularMatrixError(SurveyError, ValueError):
    """Weighted design matrix is rank deficient."""

    def __init__(self, message, rank=None, n_columns=None):
        super().__init__(message)
        self.rank = rank
        self.n_columns = n_columns


class UnknownTermError(SurveyError, LookupError):
    """Prediction grid lacks a covariate (or level) the model needs."""


__all__ = [
    "SurveyError",
    "InvalidDesignError",
    "EmptyDesignError",
    "DesignDegeneracyError",
    "InvalidFormulaError",
    "ConvergenceError",
    "SingularMatrixError",
    "UnknownTermError",
]
