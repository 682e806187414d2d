"""
Default expression engine: a FEEL subset on the arpeggio PEG parser.

The grammar covers literals, names, member access, 1-based indexing and
filters, arithmetic, comparisons, ``between``/``in``, Kleene ``and``/``or``,
``if then else`` and built-in function calls. Evaluation is null-safe:
unbound names are null, relational comparisons and built-ins on null
yield null, while equality against null is definite.
"""

import logging
import math
import re
import threading
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Callable, Dict, Mapping

from arpeggio import EOF, NoMatch, Optional, ParserPython, PTNodeVisitor, ZeroOrMore, visit_parse_tree
from arpeggio import RegExMatch as _

from .exceptions import ExpressionError, ExpressionRuntimeError, ExpressionSyntaxError

logger = logging.getLogger(__name__)

AST_CACHE_MAX_SIZE = 1000


# ==========================================
# GRAMMAR
# ==========================================

def number():
    return _(r'\d+(\.\d+)?([eE][+-]?\d+)?|\.\d+')


def string():
    return _(r'"(?:[^"\\]|\\.)*"')


def boolean():
    return _(r'(true|false)\b')


def null():
    return _(r'null\b')


def builtin_name():
    # Multi-word function names, only when followed by an argument list
    return _(r'(string\s+length|upper\s+case|lower\s+case|starts\s+with|ends\s+with|'
             r'list\s+contains|is\s+defined|string\s+join|date\s+and\s+time)(?=\s*\()')


def name():
    return _(r'(?!(and|or|if|then|else|true|false|null|in|between)\b)[A-Za-z_$][A-Za-z0-9_$]*')


def argument_list():
    return expression, ZeroOrMore(",", expression)


def call():
    return [builtin_name, name], "(", Optional(argument_list), ")"


def list_literal():
    return "[", Optional(expression, ZeroOrMore(",", expression)), "]"


def context_entry():
    return [name, string], ":", expression


def context_literal():
    return "{", Optional(context_entry, ZeroOrMore(",", context_entry)), "}"


def parenthesized():
    return "(", expression, ")"


def primary():
    return [number, string, boolean, null, call, list_literal, context_literal, parenthesized, name]


def member():
    return ".", name


def index():
    return "[", expression, "]"


def postfix():
    return primary, ZeroOrMore([member, index])


def negation():
    return "-", unary


def unary():
    return [negation, postfix]


def power():
    return unary, ZeroOrMore(_(r'\*\*'), unary)


def multiplicative():
    return power, ZeroOrMore(_(r'\*(?!\*)|/'), power)


def additive():
    return multiplicative, ZeroOrMore(_(r'\+|-'), multiplicative)


def comparison_op():
    return _(r'<=|>=|!=|=|<|>')


def between_tail():
    return _(r'between\b'), additive, _(r'and\b'), additive


def in_tail():
    return _(r'in\b'), additive


def comparison():
    return additive, Optional([(comparison_op, additive), between_tail, in_tail])


def conjunction():
    return comparison, ZeroOrMore(_(r'and\b'), comparison)


def disjunction():
    return conjunction, ZeroOrMore(_(r'or\b'), conjunction)


def conditional():
    return _(r'if\b'), expression, _(r'then\b'), expression, _(r'else\b'), expression


def expression():
    return [conditional, disjunction]


def feel():
    return expression, EOF


# ==========================================
# AST
# ==========================================

class Node:
    """Immutable AST node: a kind tag plus positional arguments."""

    __slots__ = ("kind", "args")

    def __init__(self, kind: str, *args: Any):
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "args", args)

    def __setattr__(self, key, value):
        raise AttributeError("Node is immutable")

    def __eq__(self, other):
        return isinstance(other, Node) and (self.kind, self.args) == (other.kind, other.args)

    def __hash__(self):
        return hash((self.kind, self.args))

    def __repr__(self):
        return f"Node({self.kind!r}, {', '.join(repr(a) for a in self.args)})"


def _flatten(children):
    flat = []
    for child in children:
        if isinstance(child, list):
            flat.extend(_flatten(child))
        else:
            flat.append(child)
    return flat


def _nodes(children):
    """Operand nodes of a rule, dropping punctuation and keyword tokens."""
    return [c for c in _flatten(children) if isinstance(c, Node)]


def _unescape(literal: str) -> str:
    escapes = {'n': '\n', 't': '\t', 'r': '\r', '"': '"', '\\': '\\'}
    return re.sub(r'\\(.)', lambda m: escapes.get(m.group(1), m.group(1)), literal[1:-1])


class AstBuilder(PTNodeVisitor):
    """Turns an arpeggio parse tree into ``Node`` trees."""

    def visit__default__(self, node, children):
        # Terminals keep their text so operators reach the binary visitors
        if not children and hasattr(node, 'value'):
            return node.value
        return list(children)

    def visit_number(self, node, children):
        text = node.value
        if re.fullmatch(r'\d+', text):
            return Node("lit", int(text))
        return Node("lit", float(text))

    def visit_string(self, node, children):
        return Node("lit", _unescape(node.value))

    def visit_boolean(self, node, children):
        return Node("lit", node.value == "true")

    def visit_null(self, node, children):
        return Node("lit", None)

    def visit_builtin_name(self, node, children):
        return Node("name", " ".join(node.value.split()))

    def visit_name(self, node, children):
        return Node("name", node.value)

    def visit_argument_list(self, node, children):
        return _nodes(children)

    def visit_call(self, node, children):
        items = _nodes(children)
        return Node("call", items[0].args[0], tuple(items[1:]))

    def visit_list_literal(self, node, children):
        return Node("list", *_nodes(children))

    def visit_context_entry(self, node, children):
        key, value = _nodes(children)
        return Node("entry", key.args[0], value)

    def visit_context_literal(self, node, children):
        return Node("context", *_nodes(children))

    def visit_member(self, node, children):
        return Node("member", _nodes(children)[0].args[0])

    def visit_index(self, node, children):
        return Node("index", _nodes(children)[0])

    def visit_postfix(self, node, children):
        items = _nodes(children)
        result = items[0]
        for op in items[1:]:
            if op.kind == "member":
                result = Node("get", result, op.args[0])
            else:
                result = Node("filter", result, op.args[0])
        return result

    def visit_negation(self, node, children):
        return Node("neg", _nodes(children)[0])

    def _fold(self, children):
        flat = [c for c in _flatten(children) if isinstance(c, (Node, str))]
        result = flat[0]
        for i in range(1, len(flat) - 1, 2):
            result = Node("arith", flat[i], result, flat[i + 1])
        return result

    def visit_power(self, node, children):
        return self._fold(children)

    def visit_multiplicative(self, node, children):
        return self._fold(children)

    def visit_additive(self, node, children):
        return self._fold(children)

    def visit_comparison_op(self, node, children):
        return node.value

    def visit_between_tail(self, node, children):
        return Node("between_tail", *_nodes(children))

    def visit_in_tail(self, node, children):
        return Node("in_tail", *_nodes(children))

    def visit_comparison(self, node, children):
        flat = [c for c in _flatten(children) if isinstance(c, (Node, str))]
        left = flat[0]
        if len(flat) == 1:
            return left
        tail = flat[1]
        if isinstance(tail, str):
            return Node("compare", tail, left, flat[2])
        if tail.kind == "between_tail":
            return Node("between", left, *tail.args)
        return Node("in", left, tail.args[0])

    def visit_conjunction(self, node, children):
        operands = _nodes(children)
        return operands[0] if len(operands) == 1 else Node("and", *operands)

    def visit_disjunction(self, node, children):
        operands = _nodes(children)
        return operands[0] if len(operands) == 1 else Node("or", *operands)

    def visit_conditional(self, node, children):
        return Node("if", *_nodes(children))

    def _single(self, node, children):
        return _nodes(children)[0]

    visit_primary = _single
    visit_parenthesized = _single
    visit_unary = _single
    visit_expression = _single
    visit_feel = _single


# ==========================================
# VALUE HELPERS
# ==========================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _kind(value: Any):
    if is_number(value):
        return "number"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    if isinstance(value, str):
        return "string"
    return None


def feel_equals(left: Any, right: Any) -> bool:
    """Definite equality: null equals only null, booleans never equal numbers."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        return left == right
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(feel_equals(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(feel_equals(left[k], right[k]) for k in left)
    if type(left) is not type(right):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any):
    if op == "=":
        return feel_equals(left, right)
    if op == "!=":
        return not feel_equals(left, right)

    kind = _kind(left)
    if kind is None or kind != _kind(right):
        return None
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _arith(op: str, left: Any, right: Any):
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return left + right
    if not (is_number(left) and is_number(right)):
        return None
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        return None if right == 0 else left / right
    try:
        result = left ** right
    except (OverflowError, ZeroDivisionError):
        return None
    return None if isinstance(result, complex) else result


def _to_string(value: Any):
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _numbers(args):
    """Numbers from a single list argument or from varargs; None if any is not a number."""
    values = args[0] if len(args) == 1 and isinstance(args[0], list) else list(args)
    if not all(is_number(v) for v in values):
        return None
    return values


# ==========================================
# BUILT-IN FUNCTIONS
# ==========================================

def _null_safe(*kinds: Callable[[Any], bool]):
    """Return null unless each positional argument passes its kind check."""
    def decorator(func):
        def wrapper(*args):
            if len(args) < len(kinds):
                return None
            for check, arg in zip(kinds, args):
                if arg is None or not check(arg):
                    return None
            return func(*args)
        return wrapper
    return decorator


def _is_str(value):
    return isinstance(value, str)


def _is_list(value):
    return isinstance(value, list)


def _is_any(value):
    return True


@_null_safe(lambda v: isinstance(v, bool))
def _not(value):
    return not value


@_null_safe(_is_str, is_number)
def _substring(value, start, length=None):
    start = int(start)
    begin = start - 1 if start > 0 else len(value) + start
    if length is None:
        return value[begin:]
    return value[begin:begin + int(length)]


@_null_safe(_is_list)
def _count(values):
    return len(values)


def _sum(*args):
    values = _numbers(args)
    return None if values is None else sum(values)


def _min(*args):
    values = _numbers(args)
    return min(values) if values else None


def _max(*args):
    values = _numbers(args)
    return max(values) if values else None


def _mean(*args):
    values = _numbers(args)
    return sum(values) / len(values) if values else None


@_null_safe(is_number, is_number)
def _decimal(value, scale):
    return round(value, int(scale))


@_null_safe(is_number, is_number)
def _modulo(dividend, divisor):
    return None if divisor == 0 else dividend % divisor


@_null_safe(is_number)
def _sqrt(value):
    return None if value < 0 else math.sqrt(value)


def _number(value):
    if is_number(value):
        return value
    if not isinstance(value, str):
        return None
    try:
        return int(value) if re.fullmatch(r'[+-]?\d+', value.strip()) else float(value)
    except ValueError:
        return None


def _date(*args):
    if len(args) == 3:
        if not all(is_number(a) for a in args):
            return None
        try:
            return date(int(args[0]), int(args[1]), int(args[2]))
        except ValueError:
            return None
    if len(args) != 1:
        return None
    value = args[0]
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _date_and_time(value):
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@_null_safe(_is_list, _is_any)
def _list_contains(values, element):
    return any(feel_equals(v, element) for v in values)


@_null_safe(_is_list)
def _string_join(values, separator=""):
    if not all(isinstance(v, str) for v in values) or not isinstance(separator, str):
        return None
    return separator.join(values)


@_null_safe(_is_str, _is_str)
def _matches(value, pattern):
    try:
        return re.search(pattern, value) is not None
    except re.error as e:
        raise ValueError(f"invalid pattern {pattern!r}: {e}")


def _all(*args):
    values = args[0] if len(args) == 1 and isinstance(args[0], list) else list(args)
    if any(v is False for v in values):
        return False
    return True if all(v is True for v in values) else None


def _any(*args):
    values = args[0] if len(args) == 1 and isinstance(args[0], list) else list(args)
    if any(v is True for v in values):
        return True
    return False if all(v is False for v in values) else None


BUILTINS: Dict[str, Callable[..., Any]] = {
    "not": _not,
    "string length": _null_safe(_is_str)(len),
    "upper case": _null_safe(_is_str)(str.upper),
    "lower case": _null_safe(_is_str)(str.lower),
    "substring": _substring,
    "contains": _null_safe(_is_str, _is_str)(lambda s, sub: sub in s),
    "starts with": _null_safe(_is_str, _is_str)(str.startswith),
    "ends with": _null_safe(_is_str, _is_str)(str.endswith),
    "matches": _matches,
    "string join": _string_join,
    "count": _count,
    "sum": _sum,
    "min": _min,
    "max": _max,
    "mean": _mean,
    "all": _all,
    "any": _any,
    "abs": _null_safe(is_number)(abs),
    "floor": _null_safe(is_number)(math.floor),
    "ceiling": _null_safe(is_number)(math.ceil),
    "sqrt": _sqrt,
    "modulo": _modulo,
    "decimal": _decimal,
    "string": _to_string,
    "number": _number,
    "date": _date,
    "date and time": _date_and_time,
    "today": lambda: date.today(),
    "now": lambda: datetime.now(),
    "list contains": _list_contains,
    "is defined": lambda value: value is not None,
}


# ==========================================
# INTERPRETER
# ==========================================

class Interpreter:
    """Evaluates a ``Node`` tree against a flat namespace."""

    def __init__(self, namespace: Mapping[str, Any], functions: Mapping[str, Callable[..., Any]]):
        self.namespace = namespace
        self.functions = functions

    def eval(self, node: Node) -> Any:
        return getattr(self, f"_eval_{node.kind}")(*node.args)

    def _eval_lit(self, value):
        return value

    def _eval_name(self, name):
        return self.namespace.get(name)

    def _eval_list(self, *items):
        return [self.eval(item) for item in items]

    def _eval_context(self, *entries):
        return {entry.args[0]: self.eval(entry.args[1]) for entry in entries}

    def _eval_get(self, base, key):
        target = self.eval(base)
        if isinstance(target, dict):
            return target.get(key)
        if isinstance(target, list):
            # Path projection over a list of contexts
            return [item.get(key) if isinstance(item, dict) else None for item in target]
        if isinstance(target, date) and key in ("year", "month", "day"):
            return getattr(target, key)
        return None

    def _eval_filter(self, base, selector):
        target = self.eval(base)
        if target is None:
            return None
        if not isinstance(target, list):
            target = [target]

        position = self.eval(selector)
        if is_number(position):
            i = int(position)
            if i > 0 and i <= len(target):
                return target[i - 1]
            if i < 0 and -i <= len(target):
                return target[i]
            return None

        kept = []
        for element in target:
            scope = dict(self.namespace)
            if isinstance(element, dict):
                scope.update(element)
            scope["item"] = element
            if Interpreter(scope, self.functions).eval(selector) is True:
                kept.append(element)
        return kept

    def _eval_neg(self, operand):
        value = self.eval(operand)
        return -value if is_number(value) else None

    def _eval_arith(self, op, left, right):
        return _arith(op, self.eval(left), self.eval(right))

    def _eval_compare(self, op, left, right):
        return _compare(op, self.eval(left), self.eval(right))

    def _eval_between(self, value, low, high):
        subject = self.eval(value)
        lower = _compare(">=", subject, self.eval(low))
        upper = _compare("<=", subject, self.eval(high))
        return _kleene_and([lambda: lower, lambda: upper])

    def _eval_in(self, value, candidates):
        # Membership uses the same definite equality as =, so an unbound subject
        # is false rather than null unless the list itself holds null.
        subject = self.eval(value)
        pool = self.eval(candidates)
        if isinstance(pool, list):
            return any(feel_equals(subject, c) for c in pool)
        return feel_equals(subject, pool)

    def _eval_and(self, *operands):
        return _kleene_and([lambda o=o: self.eval(o) for o in operands])

    def _eval_or(self, *operands):
        unknown = False
        for operand in operands:
            value = self.eval(operand)
            if value is True:
                return True
            if value is not False:
                unknown = True
        return None if unknown else False

    def _eval_if(self, condition, then_branch, else_branch):
        if self.eval(condition) is True:
            return self.eval(then_branch)
        return self.eval(else_branch)

    def _eval_call(self, function_name, args):
        func = self.functions.get(function_name)
        if func is None:
            raise LookupError(f"Unknown function '{function_name}'")
        return func(*[self.eval(arg) for arg in args])


def _kleene_and(thunks):
    unknown = False
    for thunk in thunks:
        value = thunk()
        if value is False:
            return False
        if value is not True:
            unknown = True
    return None if unknown else True


# ==========================================
# ENGINE
# ==========================================

class ExpressionEngine:
    """
    Contract for pluggable expression engines.

    ``evaluate`` receives the flat namespace built by the context builder and
    must keep equality definite and relational comparisons on null unknown.
    """

    def parse(self, expression: str) -> Any:
        raise NotImplementedError

    def evaluate(self, expression: str, namespace: Mapping[str, Any]) -> Any:
        raise NotImplementedError


class FeelEngine(ExpressionEngine):
    """FEEL subset engine with a bounded, lock-protected AST cache."""

    def __init__(self, functions: Mapping[str, Callable[..., Any]] = None,
                 cache_size: int = AST_CACHE_MAX_SIZE):
        self.functions = dict(BUILTINS)
        if functions:
            self.functions.update(functions)
        self.cache_size = cache_size
        self._parser = ParserPython(feel, ignore_case=False)
        self._parser_lock = threading.Lock()
        self._cache: "OrderedDict[str, Node]" = OrderedDict()
        self._cache_lock = threading.Lock()

    def parse(self, expression: str) -> Node:
        """
        Parse an expression into an immutable AST, using the cache.

        Raises:
            ExpressionSyntaxError: If the expression is not valid FEEL
        """
        if not isinstance(expression, str) or not expression.strip():
            raise ExpressionSyntaxError(str(expression), "empty expression")

        with self._cache_lock:
            if expression in self._cache:
                self._cache.move_to_end(expression)
                return self._cache[expression]

        # Arpeggio parsers keep state during a parse
        with self._parser_lock:
            try:
                tree = self._parser.parse(expression)
            except NoMatch as e:
                raise ExpressionSyntaxError(expression, str(e), getattr(e, "position", None)) from e
            ast = visit_parse_tree(tree, AstBuilder())

        with self._cache_lock:
            self._cache[expression] = ast
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return ast

    def evaluate(self, expression: str, namespace: Mapping[str, Any]) -> Any:
        """
        Evaluate an expression against a namespace.

        Raises:
            ExpressionSyntaxError: If the expression cannot be parsed
            ExpressionRuntimeError: If evaluation fails
        """
        ast = self.parse(expression)
        try:
            return Interpreter(namespace, self.functions).eval(ast)
        except ExpressionError:
            raise
        except Exception as e:
            raise ExpressionRuntimeError(expression, str(e)) from e


_DEFAULT_ENGINE = None
_DEFAULT_ENGINE_LOCK = threading.Lock()


def default_engine() -> FeelEngine:
    """Shared FeelEngine instance, created on first use."""
    global _DEFAULT_ENGINE
    with _DEFAULT_ENGINE_LOCK:
        if _DEFAULT_ENGINE is None:
            logger.debug("Creating default FEEL engine")
            _DEFAULT_ENGINE = FeelEngine()
    return _DEFAULT_ENGINE
