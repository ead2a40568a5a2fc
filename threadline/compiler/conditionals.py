"""Conditional evaluation (pass 2).

Blocks are sequential, not nested:

  (if: $x is true)   opens a block; visibility = condition
  (else:)            flips visibility inside the current block
  (endif)            closes the block; everything is visible again

A new (if:) while a block is open implicitly closes the previous one.
(set:) directives met in visible text mutate the variable table in place, so
later conditionals in this passage and in later ones see the new value.

Directives may share a line with text; each resulting line is stripped and
blank lines are dropped.

Condition grammar (small recursive descent, `and` binds tighter than `or`):

  expr       := and_expr ("or" and_expr)*
  and_expr   := not_expr ("and" not_expr)*
  not_expr   := "not" not_expr | comparison
  comparison := operand [("is" ["not"] | "<" | ">" | "<=" | ">=") operand]
  operand    := $name | "string" | number | true | false
"""

from __future__ import annotations

import re

from threadline.models import VariableValue, parse_value

from .diagnostics import DiagnosticLog
from .variables import apply_sets

DIRECTIVE_RE = re.compile(
    r"\((?P<name>if|else|endif|end-if|set)(?![\w-])\s*:?\s*(?P<arg>[^)]*)\)",
    re.IGNORECASE,
)
TOKEN_RE = re.compile(r"""\s*(\$\w+|"[^"]*"|'[^']*'|-?\d+(?:\.\d+)?|>=|<=|>|<|\w+)""")

_MISSING = None


class ConditionError(ValueError):
    """Raised when an (if:) expression cannot be parsed or compared."""


def tokenize(expr: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    expr = expr.rstrip()
    while pos < len(expr):
        match = TOKEN_RE.match(expr, pos)
        if not match:
            raise ConditionError(f"Unexpected input in condition: {expr[pos:]!r}")
        tokens.append(match.group(1))
        pos = match.end()
    return tokens


class _ConditionParser:
    def __init__(self, tokens: list[str], variables: dict[str, VariableValue]) -> None:
        self._tokens = tokens
        self._pos = 0
        self._vars = variables

    def parse(self) -> bool:
        if not self._tokens:
            raise ConditionError("Empty condition")
        result = self._or()
        if self._pos < len(self._tokens):
            raise ConditionError(f"Unexpected token {self._tokens[self._pos]!r}")
        return result

    def _peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise ConditionError("Condition ended unexpectedly")
        self._pos += 1
        return token

    def _or(self) -> bool:
        result = self._and()
        while self._peek() == "or":
            self._next()
            right = self._and()
            result = result or right
        return result

    def _and(self) -> bool:
        result = self._not()
        while self._peek() == "and":
            self._next()
            right = self._not()
            result = result and right
        return result

    def _not(self) -> bool:
        if self._peek() == "not":
            self._next()
            return not self._not()
        return self._comparison()

    def _comparison(self) -> bool:
        left = self._operand()
        op = self._peek()
        if op == "is":
            self._next()
            negate = self._peek() == "not"
            if negate:
                self._next()
            equal = _equals(left, self._operand())
            return not equal if negate else equal
        if op in ("<", ">", "<=", ">="):
            self._next()
            right = self._operand()
            try:
                if op == "<":
                    return left < right
                if op == ">":
                    return left > right
                if op == "<=":
                    return left <= right
                return left >= right
            except TypeError as e:
                raise ConditionError(f"Cannot compare {left!r} {op} {right!r}") from e
        return _truthy(left)

    def _operand(self) -> VariableValue | None:
        token = self._next()
        if token.startswith("$"):
            return self._vars.get(token[1:], _MISSING)
        if token[0] in "\"'":
            return token[1:-1]
        if token in ("true", "false"):
            return token == "true"
        if token[0].isdigit() or token[0] == "-":
            return parse_value(token)
        raise ConditionError(f"Unknown operand {token!r}")


def _truthy(value: VariableValue | None) -> bool:
    return value is not _MISSING and bool(value)


def _equals(left: VariableValue | None, right: VariableValue | None) -> bool:
    # A missing variable compares as false against boolean literals
    if isinstance(left, bool) or isinstance(right, bool):
        return _truthy(left) == _truthy(right)
    return left == right


def evaluate_condition(expr: str, variables: dict[str, VariableValue]) -> bool:
    """Evaluate an (if:) expression against a variable table."""
    return _ConditionParser(tokenize(expr), variables).parse()


def first_condition(content: str) -> str | None:
    """Return the expression of the first (if:) directive in content, if any."""
    for match in DIRECTIVE_RE.finditer(content):
        if match.group("name").lower() == "if":
            return match.group("arg").strip()
    return None


def resolve_conditionals(
    content: str,
    variables: dict[str, VariableValue],
    log: DiagnosticLog | None = None,
    passage: str | None = None,
) -> str:
    """Prune invisible text and consume directives. Mutates variables via (set:)."""
    visible = True
    in_block = False
    lines: list[str] = []

    for raw_line in content.splitlines():
        pieces: list[str] = []
        pos = 0
        for match in DIRECTIVE_RE.finditer(raw_line):
            if visible:
                pieces.append(raw_line[pos:match.start()])
            pos = match.end()
            name = match.group("name").lower()

            if name == "if":
                in_block = True
                visible = _safe_evaluate(match.group("arg"), variables, log, passage)
            elif name == "else":
                if in_block:
                    visible = not visible
                elif log is not None:
                    log.warning("condition", "(else:) outside of an (if:) block", passage=passage)
            elif name in ("endif", "end-if"):
                in_block = False
                visible = True
            elif visible:  # set
                apply_sets(match.group(0), variables)

        if visible:
            pieces.append(raw_line[pos:])
        text = "".join(pieces).strip()
        if text:
            lines.append(text)

    return "\n".join(lines)


def _safe_evaluate(
    expr: str,
    variables: dict[str, VariableValue],
    log: DiagnosticLog | None,
    passage: str | None,
) -> bool:
    try:
        return evaluate_condition(expr, variables)
    except ConditionError as e:
        if log is not None:
            log.warning("condition", f"{e} in (if: {expr.strip()})", passage=passage)
        return False
