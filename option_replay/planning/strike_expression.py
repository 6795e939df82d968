"""
Strike Expressions - arithmetic over previously resolved legs.

A strike rule such as ``{LEG1.STRIKE}+({LEG1.PREMIUM}+{LEG2.PREMIUM})/2``
is tokenized and parsed into a small typed AST, then evaluated against
the legs resolved so far in the same planning pass.

Grammar:
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | NUMBER | LEGREF | '(' expr ')'
    LEGREF := '{LEG' <n> '.' ('STRIKE' | 'PREMIUM') '}'     (n is 1-indexed)

Usage:
    expr = parse_expression('{LEG1.STRIKE}+5')
    value = expr.evaluate(resolved_legs)
"""

import re
from dataclasses import dataclass
from typing import List, Sequence, Union

from option_replay.errors import InvalidStrikeExpressionError, LegIndexOutOfRangeError

LEG_FIELDS = ('STRIKE', 'PREMIUM')

_NUMBER_RE = re.compile(r'\d+(?:\.\d*)?|\.\d+')
_LEGREF_RE = re.compile(r'\{LEG(\d+)\.([A-Z_]+)\}')


# ── Tokens ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    kind: str           # NUMBER, LEGREF, OP, LPAREN, RPAREN
    text: str
    pos: int


def tokenize(text: str) -> List[Token]:
    """
    Split an expression into tokens.

    Raises:
        InvalidStrikeExpressionError: Unknown character or malformed
            leg reference
    """
    tokens: List[Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in '+-*/':
            tokens.append(Token('OP', ch, i))
            i += 1
            continue
        if ch == '(':
            tokens.append(Token('LPAREN', ch, i))
            i += 1
            continue
        if ch == ')':
            tokens.append(Token('RPAREN', ch, i))
            i += 1
            continue
        if ch == '{':
            match = _LEGREF_RE.match(text, i)
            if not match:
                raise InvalidStrikeExpressionError(
                    f"malformed leg reference at position {i} in {text!r}"
                )
            tokens.append(Token('LEGREF', match.group(0), i))
            i = match.end()
            continue
        match = _NUMBER_RE.match(text, i)
        if match:
            tokens.append(Token('NUMBER', match.group(0), i))
            i = match.end()
            continue
        raise InvalidStrikeExpressionError(
            f"unexpected character {ch!r} at position {i} in {text!r}"
        )
    return tokens


# ── AST ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Literal:
    value: float

    def evaluate(self, legs: Sequence) -> float:
        return self.value


@dataclass(frozen=True)
class LegRef:
    """Reference to a resolved leg's strike or open premium (1-indexed)."""
    index: int
    field: str          # 'STRIKE' or 'PREMIUM'

    def evaluate(self, legs: Sequence) -> float:
        if self.index < 1 or self.index > len(legs):
            raise LegIndexOutOfRangeError(
                f"LEG{self.index} is not resolved yet ({len(legs)} leg(s) available)"
            )
        leg = legs[self.index - 1]
        if self.field == 'STRIKE':
            return float(leg.strike)
        return float(leg.open_premium)


@dataclass(frozen=True)
class Negate:
    operand: 'Node'

    def evaluate(self, legs: Sequence) -> float:
        return -self.operand.evaluate(legs)


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: 'Node'
    right: 'Node'

    def evaluate(self, legs: Sequence) -> float:
        lhs = self.left.evaluate(legs)
        rhs = self.right.evaluate(legs)
        if self.op == '+':
            return lhs + rhs
        if self.op == '-':
            return lhs - rhs
        if self.op == '*':
            return lhs * rhs
        if rhs == 0:
            raise InvalidStrikeExpressionError("division by zero in strike expression")
        return lhs / rhs


Node = Union[Literal, LegRef, Negate, BinaryOp]


# ── Parser ──────────────────────────────────────────────────────────

class _Parser:
    """Recursive descent over the token list."""

    def __init__(self, tokens: List[Token], text: str):
        self._tokens = tokens
        self._text = text
        self._pos = 0

    def parse(self) -> Node:
        if not self._tokens:
            raise InvalidStrikeExpressionError("empty strike expression")
        node = self._expr()
        if self._pos < len(self._tokens):
            tok = self._tokens[self._pos]
            raise InvalidStrikeExpressionError(
                f"unexpected {tok.text!r} at position {tok.pos} in {self._text!r}"
            )
        return node

    def _peek(self):
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _next(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise InvalidStrikeExpressionError(f"unexpected end of expression {self._text!r}")
        self._pos += 1
        return tok

    def _expr(self) -> Node:
        node = self._term()
        while True:
            tok = self._peek()
            if tok is None or tok.kind != 'OP' or tok.text not in '+-':
                return node
            self._pos += 1
            node = BinaryOp(tok.text, node, self._term())

    def _term(self) -> Node:
        node = self._factor()
        while True:
            tok = self._peek()
            if tok is None or tok.kind != 'OP' or tok.text not in '*/':
                return node
            self._pos += 1
            node = BinaryOp(tok.text, node, self._factor())

    def _factor(self) -> Node:
        tok = self._next()
        if tok.kind == 'OP' and tok.text in '+-':
            operand = self._factor()
            return Negate(operand) if tok.text == '-' else operand
        if tok.kind == 'NUMBER':
            return Literal(float(tok.text))
        if tok.kind == 'LEGREF':
            return _leg_ref(tok)
        if tok.kind == 'LPAREN':
            node = self._expr()
            closing = self._next()
            if closing.kind != 'RPAREN':
                raise InvalidStrikeExpressionError(
                    f"expected ')' at position {closing.pos} in {self._text!r}"
                )
            return node
        raise InvalidStrikeExpressionError(
            f"unexpected {tok.text!r} at position {tok.pos} in {self._text!r}"
        )


def _leg_ref(tok: Token) -> LegRef:
    match = _LEGREF_RE.fullmatch(tok.text)
    index, field = int(match.group(1)), match.group(2)
    if field not in LEG_FIELDS:
        raise InvalidStrikeExpressionError(
            f"unknown leg field {field!r} in {tok.text} (expected STRIKE or PREMIUM)"
        )
    return LegRef(index, field)


def parse_expression(text: str) -> Node:
    """
    Parse a leg expression into an AST.

    Matching is case-insensitive; the text is upper-cased first.

    Raises:
        InvalidStrikeExpressionError: Malformed input
    """
    normalized = text.strip().upper()
    return _Parser(tokenize(normalized), normalized).parse()


def evaluate_expression(text: str, legs: Sequence) -> float:
    """
    Parse and evaluate an expression against resolved legs.

    Args:
        text: Expression such as '{LEG1.STRIKE}-{LEG1.PREMIUM}'
        legs: Legs resolved so far, each with .strike and .open_premium

    Returns:
        Raw (unrounded) value

    Raises:
        InvalidStrikeExpressionError: Malformed expression or division by zero
        LegIndexOutOfRangeError: Reference to a leg not in ``legs``
    """
    return parse_expression(text).evaluate(legs)


def leg_refs(node: Node) -> List[LegRef]:
    """Every leg reference in an AST, left to right."""
    if isinstance(node, LegRef):
        return [node]
    if isinstance(node, Negate):
        return leg_refs(node.operand)
    if isinstance(node, BinaryOp):
        return leg_refs(node.left) + leg_refs(node.right)
    return []
