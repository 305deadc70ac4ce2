"""
Model terms and design matrix construction.

A model is specified as an ordered list of terms:

    "age"          raw field (categorical if the column is not numeric)
    "age^2"        polynomial power, also written "I(age^2)"
    "C(ethnicity)" explicit categorical (treatment coding)
    "age:sex"      interaction (row-wise product) of two terms

The intercept is always included. Binding a formula to data freezes
everything needed to rebuild the same columns for new data, such as the
levels of categorical terms.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidFormulaError, UnknownTermError


INTERCEPT = '(Intercept)'


# Unbound terms (what the user writes)

class Term(ABC):
    """Base class for model terms."""

    @property
    @abstractmethod
    def fields(self) -> Tuple[str, ...]:
        """Data columns the term reads."""
        pass

    @abstractmethod
    def key(self) -> tuple:
        """Canonical identity, used to detect duplicate terms."""
        pass

    @abstractmethod
    def bind(self, data: pd.DataFrame) -> 'BoundTerm':
        """Resolve the term against fitting data."""
        pass

    def __mul__(self, other):
        return Interaction(self, as_term(other))


@dataclass(frozen=True)
class Field(Term):
    """A raw data column."""
    name: str

    @property
    def fields(self):
        return (self.name,)

    def key(self):
        return ('power', self.name, 1)

    def bind(self, data):
        column = data[self.name]
        if _is_numeric(column):
            return BoundNumeric(self.name, 1)
        return Categorical(self.name).bind(data)

    def __pow__(self, degree):
        return Power(self.name, degree)

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class Power(Term):
    """A numeric column raised to an integer power."""
    name: str
    degree: int

    def __post_init__(self):
        if isinstance(self.degree, bool) or not isinstance(self.degree, (int, np.integer)) \
                or self.degree < 1:
            raise InvalidFormulaError(
                f"Power of '{self.name}' must be a positive integer, got {self.degree!r}"
            )

    @property
    def fields(self):
        return (self.name,)

    def key(self):
        return ('power', self.name, int(self.degree))

    def bind(self, data):
        if not _is_numeric(data[self.name]):
            raise InvalidFormulaError(
                f"Cannot raise non-numeric field '{self.name}' to a power"
            )
        return BoundNumeric(self.name, int(self.degree))

    def __str__(self):
        return self.name if self.degree == 1 else f"{self.name}^{self.degree}"


@dataclass(frozen=True)
class Categorical(Term):
    """
    A categorical column, treatment coded.

    Parameters
    ----------
    name : str
        Column name
    reference : optional
        Reference level (default: first level)
    levels : tuple, optional
        Level order (default: categorical dtype order, else sorted
        observed values)
    """
    name: str
    reference: Any = None
    levels: Optional[Tuple] = None

    @property
    def fields(self):
        return (self.name,)

    def key(self):
        return ('factor', self.name)

    def bind(self, data):
        column = data[self.name]
        if self.levels is not None:
            levels = tuple(self.levels)
        elif isinstance(column.dtype, pd.CategoricalDtype):
            levels = tuple(column.cat.categories)
        else:
            observed = column.dropna().unique().tolist()
            try:
                levels = tuple(sorted(observed))
            except TypeError:
                levels = tuple(sorted(observed, key=str))

        if len(levels) == 0:
            raise InvalidFormulaError(f"Categorical '{self.name}' has no levels")

        reference = levels[0] if self.reference is None else self.reference
        if reference not in levels:
            raise InvalidFormulaError(
                f"Reference level {reference!r} not among levels of '{self.name}'"
            )
        return BoundFactor(self.name, levels, reference)

    def __str__(self):
        return f"C({self.name})"


@dataclass(frozen=True)
class Interaction(Term):
    """Row-wise product of two terms."""
    left: Term
    right: Term

    @property
    def fields(self):
        return tuple(dict.fromkeys(self.left.fields + self.right.fields))

    def _factors(self) -> List[Term]:
        out = []
        for part in (self.left, self.right):
            if isinstance(part, Interaction):
                out.extend(part._factors())
            else:
                out.append(part)
        return out

    def key(self):
        keys = [f.key() for f in self._factors()]
        if len(set(keys)) < len(keys):
            raise InvalidFormulaError(f"Term interacts with itself: {self}")
        return ('interaction',) + tuple(sorted(keys, key=repr))

    def bind(self, data):
        return BoundInteraction(tuple(f.bind(data) for f in self._factors()))

    def __str__(self):
        return f"{self.left}:{self.right}"


_POWER = re.compile(r'^(?:I\(\s*)?([A-Za-z_.][\w.]*)\s*(?:\^|\*\*)\s*(\d+)\s*\)?$')
_CATEGORICAL = re.compile(r'^C\(\s*([A-Za-z_.][\w.]*)\s*\)$')
_FIELD = re.compile(r'^[A-Za-z_.][\w.]*$')


def parse_term(spec: str) -> Term:
    """
    Parse a term written as a string.

    >>> parse_term("age^2")
    Power(name='age', degree=2)
    >>> parse_term("age:C(sex)")
    Interaction(left=Field(name='age'), right=Categorical(name='sex', ...))
    """
    spec = spec.strip()
    if ':' in spec:
        head, _, tail = spec.rpartition(':')
        return Interaction(parse_term(head), parse_term(tail))

    match = _POWER.match(spec)
    if match:
        return Power(match.group(1), int(match.group(2)))
    match = _CATEGORICAL.match(spec)
    if match:
        return Categorical(match.group(1))
    if _FIELD.match(spec):
        return Field(spec)
    raise InvalidFormulaError(f"Cannot parse term: '{spec}'")


def as_term(spec: Union[str, Term]) -> Term:
    if isinstance(spec, Term):
        return spec
    if isinstance(spec, str):
        return parse_term(spec)
    raise InvalidFormulaError(f"Not a model term: {spec!r}")


class ModelFormula:
    """
    Ordered, duplicate-free list of terms (intercept implied).

    Parameters
    ----------
    terms : iterable of str or Term

    Raises
    ------
    InvalidFormulaError
        Unparsable or duplicate term.
    """

    def __init__(self, terms: Iterable[Union[str, Term]] = ()):
        self.terms: Tuple[Term, ...] = tuple(as_term(t) for t in terms)
        _check_duplicates(self.terms, [t.key() for t in self.terms])

    @property
    def fields(self) -> Tuple[str, ...]:
        """All data columns used, in order of first appearance."""
        seen = {}
        for term in self.terms:
            for f in term.fields:
                seen.setdefault(f, None)
        return tuple(seen)

    def bind(self, data: pd.DataFrame) -> 'BoundFormula':
        """
        Resolve terms against fitting data.

        Raises
        ------
        InvalidFormulaError
            Field absent from data, or duplicate terms after resolving
            column types.
        """
        missing = [f for f in self.fields if f not in data.columns]
        if missing:
            raise InvalidFormulaError(
                "Model term field(s) not found in data: "
                + ", ".join(repr(f) for f in missing)
            )
        bound = tuple(t.bind(data) for t in self.terms)
        _check_duplicates(self.terms, [b.key() for b in bound])
        return BoundFormula(bound)

    def __iter__(self):
        return iter(self.terms)

    def __len__(self):
        return len(self.terms)

    def __str__(self):
        return ' + '.join(['1'] + [str(t) for t in self.terms])

    def __repr__(self):
        return f"ModelFormula({str(self)!r})"


def _check_duplicates(terms, keys):
    seen = {}
    for term, key in zip(terms, keys):
        if key in seen:
            raise InvalidFormulaError(
                f"Duplicate model term: '{term}' (same as '{seen[key]}')"
            )
        seen[key] = term


class FormulaBuilder:
    """
    Fluent construction of term lists.

    Examples
    --------
    >>> formula = (FormulaBuilder()
    ...            .poly('age', 2)
    ...            .factor('broad_ethnic_group', reference='White')
    ...            .interact('age', 'broad_ethnic_group')
    ...            .build())
    """

    def __init__(self, terms: Iterable[Union[str, Term]] = ()):
        self._terms: List[Term] = [as_term(t) for t in terms]

    def term(self, spec: Union[str, Term]) -> 'FormulaBuilder':
        self._terms.append(as_term(spec))
        return self

    def poly(self, name: str, degree: int) -> 'FormulaBuilder':
        """Add name, name^2, ..., name^degree."""
        self._terms.append(Field(name))
        for k in range(2, degree + 1):
            self._terms.append(Power(name, k))
        return self

    def factor(self, name: str, reference: Any = None,
               levels: Optional[Sequence] = None) -> 'FormulaBuilder':
        self._terms.append(Categorical(
            name, reference, tuple(levels) if levels is not None else None
        ))
        return self

    def interact(self, left: Union[str, Term],
                 right: Union[str, Term]) -> 'FormulaBuilder':
        self._terms.append(Interaction(as_term(left), as_term(right)))
        return self

    def build(self) -> ModelFormula:
        return ModelFormula(self._terms)


# Bound terms (what a fitted model keeps)

class BoundTerm(ABC):

    @property
    @abstractmethod
    def fields(self) -> Tuple[str, ...]:
        pass

    @property
    @abstractmethod
    def labels(self) -> List[str]:
        """Column names, one per generated column."""
        pass

    @abstractmethod
    def key(self) -> tuple:
        pass

    @abstractmethod
    def columns(self, data: pd.DataFrame) -> np.ndarray:
        """Generated columns, shape (n, len(labels))."""
        pass


@dataclass(frozen=True)
class BoundNumeric(BoundTerm):
    name: str
    degree: int

    @property
    def fields(self):
        return (self.name,)

    @property
    def labels(self):
        return [self.name if self.degree == 1 else f"I({self.name}^{self.degree})"]

    def key(self):
        return ('power', self.name, self.degree)

    def columns(self, data):
        x = pd.to_numeric(data[self.name]).to_numpy(dtype=np.float64)
        return (x ** self.degree)[:, np.newaxis]


@dataclass(frozen=True)
class BoundFactor(BoundTerm):
    name: str
    levels: Tuple
    reference: Any

    @property
    def fields(self):
        return (self.name,)

    @property
    def contrasts(self) -> List:
        return [lv for lv in self.levels if lv != self.reference]

    @property
    def labels(self):
        return [f"{self.name}{lv}" for lv in self.contrasts]

    def key(self):
        return ('factor', self.name)

    def columns(self, data):
        values = data[self.name]
        unknown = values.notna() & ~values.isin(self.levels)
        if unknown.any():
            raise UnknownTermError(
                f"Unknown level(s) of '{self.name}': "
                + ", ".join(repr(v) for v in values[unknown].unique())
            )
        out = np.column_stack(
            [(values == lv).to_numpy(dtype=np.float64) for lv in self.contrasts]
        ) if self.contrasts else np.empty((len(values), 0))
        out[values.isna().to_numpy()] = np.nan
        return out


@dataclass(frozen=True)
class BoundInteraction(BoundTerm):
    parts: Tuple[BoundTerm, ...]

    @property
    def fields(self):
        return tuple(dict.fromkeys(f for p in self.parts for f in p.fields))

    @property
    def labels(self):
        labels = ['']
        for part in self.parts:
            labels = [f"{a}:{b}" if a else b for a in labels for b in part.labels]
        return labels

    def key(self):
        return ('interaction',) + tuple(sorted((p.key() for p in self.parts), key=repr))

    def columns(self, data):
        out = np.ones((len(data), 1))
        for part in self.parts:
            cols = part.columns(data)
            out = (out[:, :, np.newaxis] * cols[:, np.newaxis, :]).reshape(len(data), -1)
        return out


class BoundFormula:
    """
    Term structure frozen at fit time.

    Rebuilds the model matrix for any data holding the required fields,
    so fitting and prediction use the same expansion.
    """

    def __init__(self, terms: Tuple[BoundTerm, ...]):
        self.terms = terms

    @property
    def fields(self) -> Tuple[str, ...]:
        seen = {}
        for term in self.terms:
            for f in term.fields:
                seen.setdefault(f, None)
        return tuple(seen)

    @property
    def column_names(self) -> List[str]:
        """Coefficient names, intercept first."""
        return [INTERCEPT] + [lab for t in self.terms for lab in t.labels]

    @property
    def factors(self) -> List[BoundFactor]:
        out = []
        for term in self.terms:
            parts = term.parts if isinstance(term, BoundInteraction) else (term,)
            out.extend(p for p in parts if isinstance(p, BoundFactor))
        return out

    def matrix(self, data: pd.DataFrame, intercept: bool = True) -> np.ndarray:
        """
        Model matrix for `data`.

        Raises
        ------
        UnknownTermError
            A required field is absent, or a categorical value was not seen
            at fit time.
        """
        missing = [f for f in self.fields if f not in data.columns]
        if missing:
            raise UnknownTermError(
                "Missing covariate(s) required by the model: "
                + ", ".join(repr(f) for f in missing)
            )
        blocks = [t.columns(data) for t in self.terms]
        if intercept:
            blocks.insert(0, np.ones((len(data), 1)))
        if not blocks:
            return np.empty((len(data), 0))
        return np.column_stack(blocks)

    def __repr__(self):
        return f"BoundFormula({self.column_names!r})"


def _is_numeric(column: pd.Series) -> bool:
    return pd.api.types.is_numeric_dtype(column) and not isinstance(
        column.dtype, pd.CategoricalDtype
    )
