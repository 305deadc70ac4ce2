"""
Test model term parsing, validation and design matrix expansion.
"""

import numpy as np
import pandas as pd
import pytest

from svyregression import (
    Categorical,
    Field,
    FormulaBuilder,
    Interaction,
    InvalidFormulaError,
    ModelFormula,
    Power,
    UnknownTermError,
    parse_term,
)
from svyregression.formula import INTERCEPT


@pytest.fixture
def data():
    return pd.DataFrame({
        'age': [20.0, 30.0, 40.0, 50.0],
        'sex': ['f', 'm', 'f', 'm'],
        'group': pd.Categorical(['b', 'a', 'c', 'a'], categories=['a', 'b', 'c']),
        'count': [0, 1, 2, 3],
    })


class TestParse:

    @pytest.mark.parametrize("spec, expected", [
        ("age", Field('age')),
        (" age ", Field('age')),
        ("age^2", Power('age', 2)),
        ("I(age^3)", Power('age', 3)),
        ("age**2", Power('age', 2)),
        ("C(sex)", Categorical('sex')),
        ("age:sex", Interaction(Field('age'), Field('sex'))),
        ("age^2:C(sex)", Interaction(Power('age', 2), Categorical('sex'))),
    ])
    def test_parse(self, spec, expected):
        assert parse_term(spec) == expected

    def test_three_way_interaction(self):
        term = parse_term("a:b:c")
        assert term.fields == ('a', 'b', 'c')

    @pytest.mark.parametrize("spec", ["", "age^", "log(age)", "age + sex", "2age"])
    def test_unparsable(self, spec):
        with pytest.raises(InvalidFormulaError):
            parse_term(spec)

    @pytest.mark.parametrize("degree", [0, -1, 1.5, True])
    def test_bad_power(self, degree):
        with pytest.raises(InvalidFormulaError):
            Power('age', degree)

    def test_operators(self):
        assert Field('age') ** 2 == Power('age', 2)
        assert Field('age') * 'sex' == Interaction(Field('age'), Field('sex'))


class TestDuplicates:

    @pytest.mark.parametrize("terms", [
        ["age", "age"],
        ["age", "age^1"],
        ["age", Field('age')],
        ["age^2", "I(age^2)"],
        ["age:sex", "sex:age"],
    ])
    def test_duplicate_terms(self, terms):
        with pytest.raises(InvalidFormulaError, match="Duplicate"):
            ModelFormula(terms)

    def test_self_interaction(self):
        with pytest.raises(InvalidFormulaError, match="itself"):
            ModelFormula(["age:age"])

    def test_distinct_terms_accepted(self):
        formula = ModelFormula(["age", "age^2", "sex", "age:sex", "age^2:sex"])
        assert len(formula) == 5
        assert formula.fields == ('age', 'sex')
        assert str(formula) == "1 + age + age^2 + sex + age:sex + age^2:sex"

    def test_empty_formula(self):
        assert len(ModelFormula([])) == 0

    def test_not_a_term(self):
        with pytest.raises(InvalidFormulaError):
            ModelFormula([42])


class TestBind:

    def test_numeric_columns(self, data):
        bound = ModelFormula(["age", "age^2"]).bind(data)
        assert bound.column_names == [INTERCEPT, 'age', 'I(age^2)']
        X = bound.matrix(data)
        np.testing.assert_array_equal(X[:, 0], 1.0)
        np.testing.assert_array_equal(X[:, 1], data['age'])
        np.testing.assert_array_equal(X[:, 2], data['age'] ** 2)

    def test_string_column_is_categorical(self, data):
        bound = ModelFormula(["sex"]).bind(data)
        assert bound.column_names == [INTERCEPT, 'sexm']
        np.testing.assert_array_equal(bound.matrix(data)[:, 1], [0, 1, 0, 1])
        assert [f.name for f in bound.factors] == ['sex']

    def test_categorical_dtype_keeps_all_levels(self, data):
        bound = ModelFormula(["group"]).bind(data.iloc[[0, 1]])
        # 'c' is not observed but is a category
        assert bound.column_names == [INTERCEPT, 'groupb', 'groupc']

    def test_reference_level(self, data):
        bound = ModelFormula([Categorical('sex', reference='m')]).bind(data)
        assert bound.column_names == [INTERCEPT, 'sexf']

    def test_unknown_reference(self, data):
        with pytest.raises(InvalidFormulaError, match="Reference"):
            ModelFormula([Categorical('sex', reference='x')]).bind(data)

    def test_interaction_columns(self, data):
        bound = ModelFormula(["age", "sex", "age:sex"]).bind(data)
        assert bound.column_names == [INTERCEPT, 'age', 'sexm', 'age:sexm']
        X = bound.matrix(data)
        np.testing.assert_array_equal(X[:, 3], [0.0, 30.0, 0.0, 50.0])

    def test_factor_by_factor_interaction(self, data):
        bound = ModelFormula(["sex:group"]).bind(data)
        assert bound.column_names == [
            INTERCEPT, 'sexm:groupb', 'sexm:groupc'
        ]

    def test_power_of_categorical(self, data):
        with pytest.raises(InvalidFormulaError, match="non-numeric"):
            ModelFormula(["sex^2"]).bind(data)

    def test_field_and_explicit_categorical_are_duplicates(self, data):
        with pytest.raises(InvalidFormulaError, match="Duplicate"):
            ModelFormula(["sex", Categorical('sex', reference='m')]).bind(data)

    def test_missing_field(self, data):
        with pytest.raises(InvalidFormulaError, match="bmi"):
            ModelFormula(["age", "bmi"]).bind(data)

    def test_matrix_for_new_data(self, data):
        bound = ModelFormula(["age", "sex"]).bind(data)
        new = pd.DataFrame({'age': [35.0], 'sex': ['m']})
        np.testing.assert_array_equal(bound.matrix(new), [[1.0, 35.0, 1.0]])

    def test_matrix_missing_column(self, data):
        bound = ModelFormula(["age", "sex"]).bind(data)
        with pytest.raises(UnknownTermError, match="sex"):
            bound.matrix(pd.DataFrame({'age': [35.0]}))

    def test_matrix_unknown_level(self, data):
        bound = ModelFormula(["sex"]).bind(data)
        with pytest.raises(UnknownTermError, match="x"):
            bound.matrix(pd.DataFrame({'sex': ['x']}))


class TestBuilder:

    def test_poly_factor_interact(self, data):
        formula = (FormulaBuilder()
                   .poly('age', 2)
                   .factor('sex', reference='f')
                   .interact('age', 'sex')
                   .build())
        assert [str(t) for t in formula] == ['age', 'age^2', 'C(sex)', 'age:sex']
        bound = formula.bind(data)
        assert bound.column_names == [INTERCEPT, 'age', 'I(age^2)', 'sexm', 'age:sexm']

    def test_builder_starts_from_terms(self):
        formula = FormulaBuilder(['age']).term('age^2').build()
        assert formula.terms == (Field('age'), Power('age', 2))

    def test_builder_rejects_duplicates_on_build(self):
        with pytest.raises(InvalidFormulaError):
            FormulaBuilder().poly('age', 2).term('age').build()
