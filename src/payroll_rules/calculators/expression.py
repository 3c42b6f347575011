"""Restricted formula language for payroll calculation rules.

Formulas are authored by payroll administrators, so the grammar is
deliberately small: numbers, variables, arithmetic, comparisons, boolean
connectives and a fixed set of pure functions. No loops, no assignment,
no user-defined functions.

Precedence (low to high):
    OR / ||
    AND / &&
    NOT / !    (SQL-style: `NOT basic > 100` negates the comparison)
    comparison  == != <> = > < >= <=   (non-associative)
    additive    + -
    multiplicative  * / %
    unary       - +
    primary     number, TRUE, FALSE, variable, FUNC(args), ( expr )

Functions (fixed arity):
    MIN(a, b)  MAX(a, b)  ROUND(x, n)  FLOOR(x)  CEILING(x)  ABS(x)  IF(c, a, b)

All arithmetic is Decimal. Comparisons and boolean operators yield 1 or 0;
any non-zero value is true. ROUND uses round-half-up.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import (
    ROUND_CEILING,
    ROUND_FLOOR,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    Context,
    Decimal,
    DecimalException,
    localcontext,
)
from typing import TYPE_CHECKING, Any, Union

from payroll_rules.calculators.errors import (
    DivisionByZeroError,
    EvalError,
    ExpressionTooComplexError,
    InvalidFunctionError,
    ParseError,
    TypeMismatchError,
    UnexpectedTokenError,
    UnknownVariableError,
)

if TYPE_CHECKING:
    from payroll_rules.config import Settings


DEFAULT_MAX_LENGTH = 4096
DEFAULT_MAX_DEPTH = 32

# Left-deep operator chains do not nest syntactically but still grow the tree
TREE_HEIGHT_FACTOR = 8
MAX_TREE_HEIGHT = 256

FUNCTION_ARITY: dict[str, int] = {
    "MIN": 2,
    "MAX": 2,
    "ROUND": 2,
    "FLOOR": 1,
    "CEILING": 1,
    "ABS": 1,
    "IF": 3,
}

KEYWORDS = frozenset({"AND", "OR", "NOT", "TRUE", "FALSE"})

COMPARISON_OPERATORS: dict[str, str] = {
    "==": "==",
    "=": "==",
    "!=": "!=",
    "<>": "!=",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "<=": "<=",
}

_TRUE = Decimal(1)
_FALSE = Decimal(0)

_DECIMAL_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<number>\d+(?:\.\d*)?|\.\d+)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>==|!=|<>|>=|<=|&&|\|\||[-+*/%<>=!(),])
    """,
    re.VERBOSE,
)


# === Tokens ===


@dataclass(frozen=True)
class Token:
    """A lexical token with its character offset in the source."""

    kind: str  # 'number', 'ident', 'op', 'eof'
    text: str
    position: int


def tokenize(expression: str) -> list[Token]:
    """Split an expression into tokens, ending with an 'eof' token."""
    tokens: list[Token] = []
    pos = 0
    length = len(expression)

    while pos < length:
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise UnexpectedTokenError(expression[pos], pos)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind=kind, text=match.group(), position=pos))
        pos = match.end()

    tokens.append(Token(kind="eof", text="", position=length))
    return tokens


# === AST ===


@dataclass(frozen=True)
class Number:
    value: Decimal
    position: int
    height: int = field(default=1, compare=False)


@dataclass(frozen=True)
class Variable:
    name: str
    position: int
    height: int = field(default=1, compare=False)


@dataclass(frozen=True)
class Unary:
    op: str  # '-', '+', 'NOT'
    operand: Node
    position: int
    height: int = field(default=1, compare=False)


@dataclass(frozen=True)
class Binary:
    op: str  # '+', '-', '*', '/', '%', comparison, 'AND', 'OR'
    left: Node
    right: Node
    position: int
    height: int = field(default=1, compare=False)


@dataclass(frozen=True)
class Call:
    name: str  # upper-cased
    args: tuple[Node, ...]
    position: int
    height: int = field(default=1, compare=False)


Node = Union[Number, Variable, Unary, Binary, Call]


@dataclass(frozen=True)
class Expression:
    """A parsed, immutable formula. Safe to share across threads."""

    source: str
    root: Node
    variables: tuple[str, ...]

    def __str__(self) -> str:
        return self.source


# === Parser ===


class ExpressionParser:
    """Parses formula text into an `Expression`.

    The parser is stateless between calls; each `parse` builds its own
    cursor, so one instance can be shared.
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.max_length = max_length
        self.max_depth = max_depth

    @classmethod
    def from_settings(cls, settings: Settings) -> ExpressionParser:
        return cls(
            max_length=settings.formula_max_length,
            max_depth=settings.formula_max_depth,
        )

    def parse(self, expression: str) -> Expression:
        """Parse an expression.

        Raises:
            ParseError: on malformed input, with the offending position
        """
        if len(expression) > self.max_length:
            raise ExpressionTooComplexError(
                f"Expression is longer than {self.max_length} characters",
                self.max_length,
            )
        if not expression.strip():
            raise ParseError("Expression cannot be empty", 0)

        cursor = _Cursor(tokenize(expression), self.max_depth)
        try:
            root = cursor.parse_expression()
        except RecursionError:
            raise ExpressionTooComplexError(
                "Expression is nested too deeply to parse", cursor.current.position
            ) from None
        cursor.expect_eof()

        return Expression(
            source=expression,
            root=root,
            variables=tuple(cursor.variables),
        )


class _Cursor:
    """Recursive-descent state for a single parse."""

    def __init__(self, tokens: list[Token], max_depth: int):
        self.tokens = tokens
        self.index = 0
        self.depth = 0
        self.max_depth = max_depth
        self.max_height = min(max_depth * TREE_HEIGHT_FACTOR, MAX_TREE_HEIGHT)
        self.variables: list[str] = []

    # --- token helpers ---

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.kind != "eof":
            self.index += 1
        return token

    def at_op(self, *ops: str) -> bool:
        token = self.current
        return token.kind == "op" and token.text in ops

    def at_keyword(self, *words: str) -> bool:
        token = self.current
        return token.kind == "ident" and token.text.upper() in words

    def expect_op(self, op: str) -> Token:
        if not self.at_op(op):
            raise UnexpectedTokenError(
                self.current.text, self.current.position, expected=f"'{op}'"
            )
        return self.advance()

    def expect_eof(self) -> None:
        token = self.current
        if token.kind != "eof":
            raise UnexpectedTokenError(token.text, token.position)

    # --- bounds ---

    def enter(self, position: int) -> None:
        self.depth += 1
        if self.depth > self.max_depth:
            raise ExpressionTooComplexError(
                f"Expression nesting exceeds {self.max_depth} levels", position
            )

    def leave(self) -> None:
        self.depth -= 1

    def check_height(self, node: Node) -> Node:
        if node.height > self.max_height:
            raise ExpressionTooComplexError(
                f"Expression has more than {self.max_height} chained operations",
                node.position,
            )
        return node

    def binary(self, op: str, left: Node, right: Node, position: int) -> Node:
        height = max(left.height, right.height) + 1
        return self.check_height(Binary(op, left, right, position, height))

    # --- grammar ---

    def parse_expression(self) -> Node:
        return self.parse_or()

    def parse_or(self) -> Node:
        left = self.parse_and()
        while self.at_keyword("OR") or self.at_op("||"):
            token = self.advance()
            right = self.parse_and()
            left = self.binary("OR", left, right, token.position)
        return left

    def parse_and(self) -> Node:
        left = self.parse_not()
        while self.at_keyword("AND") or self.at_op("&&"):
            token = self.advance()
            right = self.parse_not()
            left = self.binary("AND", left, right, token.position)
        return left

    def parse_not(self) -> Node:
        if self.at_op("!") or self.at_keyword("NOT"):
            token = self.advance()
            self.enter(token.position)
            operand = self.parse_not()
            self.leave()
            return self.check_height(
                Unary("NOT", operand, token.position, operand.height + 1)
            )
        return self.parse_comparison()

    def parse_comparison(self) -> Node:
        left = self.parse_additive()
        if self.at_op(*COMPARISON_OPERATORS):
            token = self.advance()
            right = self.parse_additive()
            left = self.binary(
                COMPARISON_OPERATORS[token.text], left, right, token.position
            )
            if self.at_op(*COMPARISON_OPERATORS):
                # a < b < c reads naturally but would compare a boolean with c
                raise UnexpectedTokenError(
                    self.current.text,
                    self.current.position,
                    expected="AND/OR between comparisons",
                )
        return left

    def parse_additive(self) -> Node:
        left = self.parse_multiplicative()
        while self.at_op("+", "-"):
            token = self.advance()
            right = self.parse_multiplicative()
            left = self.binary(token.text, left, right, token.position)
        return left

    def parse_multiplicative(self) -> Node:
        left = self.parse_unary()
        while self.at_op("*", "/", "%"):
            token = self.advance()
            right = self.parse_unary()
            left = self.binary(token.text, left, right, token.position)
        return left

    def parse_unary(self) -> Node:
        if self.at_op("-", "+"):
            token = self.advance()
            op = token.text
            self.enter(token.position)
            operand = self.parse_unary()
            self.leave()
            return self.check_height(
                Unary(op, operand, token.position, operand.height + 1)
            )
        return self.parse_primary()

    def parse_primary(self) -> Node:
        token = self.current

        if token.kind == "number":
            self.advance()
            return Number(Decimal(token.text), token.position)

        if token.kind == "op" and token.text == "(":
            self.advance()
            self.enter(token.position)
            node = self.parse_expression()
            self.leave()
            if not self.at_op(")"):
                raise UnexpectedTokenError(
                    self.current.text,
                    self.current.position,
                    expected=f"')' to close '(' at position {token.position}",
                )
            self.advance()
            return node

        if token.kind == "ident":
            self.advance()
            word = token.text.upper()

            if self.at_op("("):
                return self.parse_call(token)
            if word == "TRUE":
                return Number(_TRUE, token.position)
            if word == "FALSE":
                return Number(_FALSE, token.position)
            if word in KEYWORDS:
                raise UnexpectedTokenError(token.text, token.position)
            if word in FUNCTION_ARITY:
                raise UnexpectedTokenError(
                    self.current.text,
                    self.current.position,
                    expected=f"'(' after {word}",
                )

            name = token.text.lower()
            if name not in self.variables:
                self.variables.append(name)
            return Variable(name, token.position)

        raise UnexpectedTokenError(token.text, token.position, expected="a value")

    def parse_call(self, name_token: Token) -> Node:
        name = name_token.text.upper()
        if name not in FUNCTION_ARITY:
            raise InvalidFunctionError(name_token.text, name_token.position)

        open_paren = self.expect_op("(")
        self.enter(open_paren.position)

        args: list[Node] = []
        if not self.at_op(")"):
            args.append(self.parse_expression())
            while self.at_op(","):
                self.advance()
                args.append(self.parse_expression())

        if not self.at_op(")"):
            raise UnexpectedTokenError(
                self.current.text,
                self.current.position,
                expected=f"',' or ')' in call to {name}",
            )
        self.advance()
        self.leave()

        expected = FUNCTION_ARITY[name]
        if len(args) != expected:
            raise InvalidFunctionError(
                name, name_token.position, expected_arity=expected, actual_arity=len(args)
            )

        height = max(a.height for a in args) + 1
        return self.check_height(Call(name, tuple(args), name_token.position, height))


# === Evaluator ===


def to_decimal(value: Any) -> Decimal:
    """Coerce a fact value to a finite Decimal without binary float artefacts."""
    if isinstance(value, bool):
        return _TRUE if value else _FALSE
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            number = Decimal(str(value))
        except DecimalException as e:
            raise TypeMismatchError(f"Not a number: {value!r}") from e
    else:
        raise TypeMismatchError(f"Not a number: {value!r}")
    if not number.is_finite():
        raise TypeMismatchError(f"Not a finite number: {value!r}")
    return number


def _truthy(value: Decimal) -> bool:
    return value != 0


class ExpressionEvaluator:
    """Evaluates parsed expressions against a mapping of variable values.

    Pure: no I/O, no mutation of the context, identical inputs give
    identical output.
    """

    def evaluate(self, expression: Expression, context: Mapping[str, Any]) -> Decimal:
        """Evaluate an expression.

        Raises:
            EvalError: unknown variable, division by zero, or a bad operand
        """
        with localcontext(_DECIMAL_CONTEXT):
            try:
                return self._eval(expression.root, context)
            except DecimalException as e:
                raise EvalError(f"Arithmetic error: {type(e).__name__}") from e
            except RecursionError:
                raise EvalError("Expression is nested too deeply to evaluate") from None

    def _eval(self, node: Node, context: Mapping[str, Any]) -> Decimal:
        if isinstance(node, Number):
            return node.value

        if isinstance(node, Variable):
            try:
                raw = context[node.name]
            except KeyError:
                raise UnknownVariableError(node.name) from None
            return to_decimal(raw)

        if isinstance(node, Unary):
            operand = self._eval(node.operand, context)
            if node.op == "-":
                return -operand
            if node.op == "+":
                return operand
            return _FALSE if _truthy(operand) else _TRUE

        if isinstance(node, Binary):
            return self._eval_binary(node, context)

        if isinstance(node, Call):
            return self._eval_call(node, context)

        raise TypeMismatchError(f"Unsupported node: {type(node).__name__}")

    def _eval_binary(self, node: Binary, context: Mapping[str, Any]) -> Decimal:
        op = node.op

        if op == "AND":
            if not _truthy(self._eval(node.left, context)):
                return _FALSE
            return _TRUE if _truthy(self._eval(node.right, context)) else _FALSE
        if op == "OR":
            if _truthy(self._eval(node.left, context)):
                return _TRUE
            return _TRUE if _truthy(self._eval(node.right, context)) else _FALSE

        left = self._eval(node.left, context)
        right = self._eval(node.right, context)

        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op in ("/", "%"):
            if right == 0:
                raise DivisionByZeroError(op)
            return left / right if op == "/" else left % right

        if op == "==":
            result = left == right
        elif op == "!=":
            result = left != right
        elif op == ">":
            result = left > right
        elif op == "<":
            result = left < right
        elif op == ">=":
            result = left >= right
        elif op == "<=":
            result = left <= right
        else:
            raise TypeMismatchError(f"Unsupported operator: {op}")
        return _TRUE if result else _FALSE

    def _eval_call(self, node: Call, context: Mapping[str, Any]) -> Decimal:
        name = node.name

        if name == "IF":
            condition, when_true, when_false = node.args
            branch = when_true if _truthy(self._eval(condition, context)) else when_false
            return self._eval(branch, context)

        args = [self._eval(arg, context) for arg in node.args]

        if name == "MIN":
            return min(args[0], args[1])
        if name == "MAX":
            return max(args[0], args[1])
        if name == "ABS":
            return abs(args[0])
        if name == "FLOOR":
            return args[0].to_integral_value(rounding=ROUND_FLOOR)
        if name == "CEILING":
            return args[0].to_integral_value(rounding=ROUND_CEILING)
        if name == "ROUND":
            return round_half_up(args[0], args[1])

        raise TypeMismatchError(f"Unsupported function: {name}")


def round_half_up(value: Decimal, digits: Decimal | int) -> Decimal:
    """Round to `digits` decimal places, halves away from zero."""
    places = Decimal(digits)
    if places != places.to_integral_value():
        raise TypeMismatchError(f"ROUND digits must be a whole number, got {digits}")
    n = int(places)
    if abs(n) > 20:
        raise TypeMismatchError(f"ROUND digits out of range: {n}")
    return value.quantize(Decimal(1).scaleb(-n), rounding=ROUND_HALF_UP)


# === Convenience API ===


_default_evaluator = ExpressionEvaluator()


def parse_expression(expression: str, settings: Settings | None = None) -> Expression:
    """Parse formula text using configured bounds."""
    if settings is None:
        return ExpressionParser().parse(expression)
    return ExpressionParser.from_settings(settings).parse(expression)


def evaluate_expression(
    expression: Expression | str, context: Mapping[str, Any]
) -> Decimal:
    """Evaluate a parsed expression, parsing first when given text."""
    if isinstance(expression, str):
        expression = parse_expression(expression)
    return _default_evaluator.evaluate(expression, context)


def extract_variables(expression: str) -> list[str]:
    """Variables referenced by an expression, in order of first use."""
    return list(parse_expression(expression).variables)


@dataclass
class FormulaValidation:
    """Outcome of validating a formula in the rule editor."""

    is_valid: bool
    message: str | None = None
    position: int | None = None
    used_variables: list[str] = field(default_factory=list)
    unknown_variables: list[str] = field(default_factory=list)
    sample_result: Decimal | None = None
    sample_error: str | None = None


def validate_formula(
    expression: str,
    known_variables: Iterable[str] | None = None,
    sample_values: Mapping[str, Any] | None = None,
    settings: Settings | None = None,
) -> FormulaValidation:
    """Validate a formula without a real fact context.

    The formula is parsed; referenced variables are checked against
    `known_variables` when given; then it is evaluated once with every
    variable bound to a sample value. A failing sample evaluation does not
    make the formula invalid (e.g. `x / (a - b)` with equal samples) but is
    reported in `sample_error`.
    """
    try:
        parsed = parse_expression(expression, settings)
    except ParseError as e:
        return FormulaValidation(is_valid=False, message=str(e), position=e.position)

    used = list(parsed.variables)
    unknown: list[str] = []
    if known_variables is not None:
        known = {v.lower() for v in known_variables}
        unknown = [v for v in used if v not in known]
        if unknown:
            return FormulaValidation(
                is_valid=False,
                message=f"Unknown variable(s): {', '.join(unknown)}",
                used_variables=used,
                unknown_variables=unknown,
            )

    default_sample = settings.formula_sample_value if settings else Decimal("10000")
    samples = {k.lower(): v for k, v in (sample_values or {}).items()}
    bindings = {v: samples.get(v, default_sample) for v in used}

    try:
        result = _default_evaluator.evaluate(parsed, bindings)
    except EvalError as e:
        return FormulaValidation(
            is_valid=True,
            used_variables=used,
            sample_error=str(e),
        )

    return FormulaValidation(is_valid=True, used_variables=used, sample_result=result)
