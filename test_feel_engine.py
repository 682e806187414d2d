"""
Unit tests for the FEEL expression engine.
"""

import pytest
from datetime import date

from form_engine.exceptions import ExpressionRuntimeError, ExpressionSyntaxError
from form_engine.feel import FeelEngine, Node, default_engine, feel_equals


class TestFeelParsing:
    """Test cases for parsing and the AST cache."""

    def setup_method(self):
        self.engine = FeelEngine()

    def test_parse_returns_immutable_node(self):
        ast = self.engine.parse("a + 1")

        assert isinstance(ast, Node)
        assert ast.kind == "arith"
        with pytest.raises(AttributeError):
            ast.kind = "lit"

    def test_parse_is_cached(self):
        first = self.engine.parse("x > 5")
        second = self.engine.parse("x > 5")

        assert first is second

    def test_cache_is_bounded(self):
        engine = FeelEngine(cache_size=2)
        engine.parse("a")
        engine.parse("b")
        engine.parse("c")

        assert list(engine._cache.keys()) == ["b", "c"]

    def test_parse_empty_expression(self):
        with pytest.raises(ExpressionSyntaxError):
            self.engine.parse("   ")

    def test_parse_invalid_expression(self):
        with pytest.raises(ExpressionSyntaxError) as exc_info:
            self.engine.parse("a > > 3")

        assert str(exc_info.value).startswith("Syntax error:")
        assert exc_info.value.expression == "a > > 3"

    def test_unbalanced_parenthesis(self):
        with pytest.raises(ExpressionSyntaxError):
            self.engine.parse("(a + 1")

    def test_default_engine_is_shared(self):
        assert default_engine() is default_engine()


class TestFeelEvaluation:
    """Test cases for operator semantics."""

    def setup_method(self):
        self.engine = FeelEngine()

    def evaluate(self, expression, **namespace):
        return self.engine.evaluate(expression, namespace)

    def test_literals(self):
        assert self.evaluate("42") == 42
        assert self.evaluate("1.5") == 1.5
        assert self.evaluate('"hello"') == "hello"
        assert self.evaluate("true") is True
        assert self.evaluate("null") is None
        assert self.evaluate("[1, 2, 3]") == [1, 2, 3]
        assert self.evaluate('{a: 1, "b c": 2}') == {"a": 1, "b c": 2}

    def test_string_escapes(self):
        assert self.evaluate(r'"say \"hi\""') == 'say "hi"'

    def test_unbound_name_is_null(self):
        assert self.evaluate("missing") is None

    def test_arithmetic_precedence(self):
        assert self.evaluate("2 + 3 * 4") == 14
        assert self.evaluate("(2 + 3) * 4") == 20
        assert self.evaluate("2 ** 3") == 8
        assert self.evaluate("10 - 4 - 3") == 3
        assert self.evaluate("-x + 1", x=4) == -3

    def test_arithmetic_with_null(self):
        assert self.evaluate("x + 1") is None
        assert self.evaluate('"a" * 2') is None

    def test_division_by_zero_is_null(self):
        assert self.evaluate("10 / 0") is None

    def test_string_concatenation(self):
        assert self.evaluate('first + " " + last', first="Ada", last="Lovelace") == "Ada Lovelace"

    def test_equality_is_definite(self):
        assert self.evaluate("x = null") is True
        assert self.evaluate("x != null") is False
        assert self.evaluate("x = 5") is False
        assert self.evaluate("x = true") is False
        assert self.evaluate("x = 5", x=5) is True

    def test_boolean_never_equals_number(self):
        assert self.evaluate("flag = 1", flag=True) is False
        assert feel_equals(True, 1) is False
        assert feel_equals(1, 1.0) is True

    def test_relational_on_null_is_null(self):
        assert self.evaluate("x > 5") is None
        assert self.evaluate("x <= 5") is None

    def test_relational_on_mismatched_kinds_is_null(self):
        assert self.evaluate('x > "a"', x=5) is None

    def test_relational_comparisons(self):
        assert self.evaluate("x > 5", x=10) is True
        assert self.evaluate("x >= 10", x=10) is True
        assert self.evaluate('name < "b"', name="alice") is True

    def test_kleene_and(self):
        assert self.evaluate("false and x > 5") is False
        assert self.evaluate("true and x > 5") is None
        assert self.evaluate("true and true") is True

    def test_kleene_or(self):
        assert self.evaluate("true or x > 5") is True
        assert self.evaluate("false or x > 5") is None
        assert self.evaluate("false or false") is False

    def test_null_safe_pattern(self):
        expression = "x != null and x > 0"

        assert self.evaluate(expression) is False
        assert self.evaluate(expression, x=3) is True

    def test_between(self):
        assert self.evaluate("age between 18 and 65", age=30) is True
        assert self.evaluate("age between 18 and 65", age=70) is False
        assert self.evaluate("age between 18 and 65") is None

    def test_in_list(self):
        assert self.evaluate('status in ["open", "pending"]', status="open") is True
        assert self.evaluate('status in ["open", "pending"]', status="closed") is False
        assert self.evaluate('status in ["open", "pending"]') is False
        assert self.evaluate("status in [1, null]") is True

    def test_if_then_else(self):
        assert self.evaluate('if x > 5 then "big" else "small"', x=10) == "big"
        assert self.evaluate('if x > 5 then "big" else "small"', x=1) == "small"
        # Unknown condition takes the else branch
        assert self.evaluate('if x > 5 then "big" else "small"') == "small"

    def test_member_access(self):
        assert self.evaluate("address.city", address={"city": "Oslo"}) == "Oslo"
        assert self.evaluate("address.city") is None

    def test_list_projection(self):
        items = [{"amount": 5}, {"amount": 7}]

        assert self.evaluate("items.amount", items=items) == [5, 7]
        assert self.evaluate("sum(items.amount)", items=items) == 12

    def test_index_is_one_based(self):
        values = [10, 20, 30]

        assert self.evaluate("values[1]", values=values) == 10
        assert self.evaluate("values[-1]", values=values) == 30
        assert self.evaluate("values[4]", values=values) is None

    def test_filter(self):
        items = [{"amount": 5}, {"amount": 70}, {"amount": 120}]

        assert self.evaluate("items[amount > 50]", items=items) == [{"amount": 70}, {"amount": 120}]
        assert self.evaluate("count(items[item.amount > 100])", items=items) == 1

    def test_unknown_function(self):
        with pytest.raises(ExpressionRuntimeError, match="Unknown function"):
            self.evaluate("frobnicate(1)")

    def test_custom_function(self):
        engine = FeelEngine(functions={"double": lambda v: v * 2})

        assert engine.evaluate("double(4)", {}) == 8


class TestBuiltins:
    """Test cases for built-in functions."""

    def setup_method(self):
        self.engine = FeelEngine()

    def evaluate(self, expression, **namespace):
        return self.engine.evaluate(expression, namespace)

    def test_string_functions(self):
        assert self.evaluate('string length("abc")') == 3
        assert self.evaluate('upper case("abc")') == "ABC"
        assert self.evaluate('lower case("ABC")') == "abc"
        assert self.evaluate('substring("foobar", 4)') == "bar"
        assert self.evaluate('substring("foobar", 1, 3)') == "foo"
        assert self.evaluate('contains("foobar", "oba")') is True
        assert self.evaluate('starts with("foobar", "foo")') is True
        assert self.evaluate('ends with("foobar", "bar")') is True
        assert self.evaluate('matches("abc123", "[0-9]+")') is True
        assert self.evaluate('string join(["a", "b"], "-")') == "a-b"

    def test_string_functions_are_null_safe(self):
        assert self.evaluate("string length(name)") is None
        assert self.evaluate("upper case(5)") is None

    def test_list_functions(self):
        assert self.evaluate("count([1, 2, 3])") == 3
        assert self.evaluate("sum([1, 2, 3])") == 6
        assert self.evaluate("min([4, 2, 8])") == 2
        assert self.evaluate("max(4, 2, 8)") == 8
        assert self.evaluate("mean([2, 4])") == 3
        assert self.evaluate("list contains([1, 2], 2)") is True

    def test_list_functions_with_null_elements(self):
        assert self.evaluate("sum([1, null])") is None
        assert self.evaluate("count(missing)") is None

    def test_all_and_any(self):
        assert self.evaluate("all([true, true])") is True
        assert self.evaluate("all([true, false])") is False
        assert self.evaluate("all([true, null])") is None
        assert self.evaluate("any([false, true])") is True
        assert self.evaluate("any([false, null])") is None

    def test_numeric_functions(self):
        assert self.evaluate("abs(-3)") == 3
        assert self.evaluate("floor(2.7)") == 2
        assert self.evaluate("ceiling(2.1)") == 3
        assert self.evaluate("sqrt(16)") == 4
        assert self.evaluate("modulo(10, 3)") == 1
        assert self.evaluate("decimal(2.456, 2)") == 2.46
        assert self.evaluate("sqrt(-1)") is None

    def test_conversion_functions(self):
        assert self.evaluate("string(3.0)") == "3"
        assert self.evaluate("string(true)") == "true"
        assert self.evaluate('number("42")') == 42
        assert self.evaluate('number("4.5")') == 4.5
        assert self.evaluate('number("abc")') is None

    def test_not(self):
        assert self.evaluate("not(true)") is False
        assert self.evaluate("not(x)") is None

    def test_is_defined(self):
        assert self.evaluate("is defined(x)") is False
        assert self.evaluate("is defined(x)", x=0) is True

    def test_dates(self):
        assert self.evaluate('date("2024-03-15")') == date(2024, 3, 15)
        assert self.evaluate("date(2024, 3, 15)") == date(2024, 3, 15)
        assert self.evaluate('date("2024-03-15") < date("2024-04-01")') is True
        assert self.evaluate('date("2024-03-15").year') == 2024
        assert self.evaluate('date("not a date")') is None
