"""
formula_engine.py — Calculation formulas over inspection / trade-in field values.

A formula is stored as a list of tokens, each either a field reference
(``{"field_id": ..., "order": n}``) or an operator (``{"operation": "+", "order": n}``).
The explicit ``order`` decides evaluation sequence, not list position.

Pipeline:
  1. ordered_tokens     — validate each token, reject duplicate orders, sort by order
  2. compile_formula    — structural checks + recursive-descent parse into a tree
  3. CompiledFormula.evaluate(values) — pure arithmetic over a field-value map

Numeric semantics (permissive running totals):
  - a referenced field that is missing or non-numeric counts as 0
  - multiplier values ({quantity, price, total}) contribute their ``total``
  - division by zero yields 0

Structural problems are never papered over: every malformed formula raises
ValidationError naming the violated invariant.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
import math

from app.models.config_schema import (
    OPERATORS,
    PARENTHESES,
    CalculationConfig,
    ConfigurationDocument,
    FormulaToken,
)
from app.services.errors import ValidationError


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRef:
    field_id: str


@dataclass(frozen=True)
class UnaryMinus:
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[FieldRef, UnaryMinus, BinaryOp]
TokenLike = Union[FormulaToken, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Token handling
# ---------------------------------------------------------------------------

def _as_token(raw: TokenLike) -> FormulaToken:
    if isinstance(raw, FormulaToken):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("formula_invalid_token", f"Formula token must be an object, got {type(raw).__name__}")
    order = raw.get("order")
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError("formula_invalid_token", f"Formula token has no integer order: {dict(raw)}")
    return FormulaToken(field_id=raw.get("field_id"), operation=raw.get("operation"), order=order)


def _check_token(token: FormulaToken) -> None:
    has_field = bool(token.field_id)
    has_op = bool(token.operation)
    if has_field == has_op:
        raise ValidationError(
            "formula_invalid_token",
            f"Token at order {token.order} must carry exactly one of field_id or operation",
        )
    if has_op and token.operation not in OPERATORS + PARENTHESES:
        raise ValidationError(
            "formula_invalid_token",
            f"Unsupported operation '{token.operation}' at order {token.order}",
        )


def ordered_tokens(tokens: Iterable[TokenLike]) -> List[FormulaToken]:
    """Validate tokens individually and return them sorted by ``order``."""
    result = [_as_token(t) for t in tokens]
    for token in result:
        _check_token(token)
    seen = set()
    for token in result:
        if token.order in seen:
            raise ValidationError(
                "formula_duplicate_order",
                f"Two formula tokens share order {token.order}; evaluation sequence is ambiguous",
            )
        seen.add(token.order)
    return sorted(result, key=lambda t: t.order)


def normalize_formula(tokens: Iterable[TokenLike]) -> List[FormulaToken]:
    """Validated tokens in evaluation order with ``order`` rewritten to 0..n-1."""
    compiled = compile_formula(tokens)
    return [
        FormulaToken(field_id=t.field_id, operation=t.operation, order=i)
        for i, t in enumerate(compiled.tokens)
    ]


def referenced_field_ids(tokens: Iterable[TokenLike]) -> List[str]:
    """Field ids referenced by a formula, first occurrence order, no duplicates."""
    ids: List[str] = []
    for raw in tokens:
        token = _as_token(raw)
        if token.field_id and token.field_id not in ids:
            ids.append(token.field_id)
    return ids


def to_expression(tokens: Iterable[TokenLike], labels: Optional[Mapping[str, str]] = None) -> str:
    """Human-readable infix string, e.g. ``"Parts + Labour"``."""
    labels = labels or {}
    parts = []
    for token in ordered_tokens(tokens):
        if token.field_id:
            parts.append(labels.get(token.field_id, token.field_id))
        else:
            parts.append(token.operation)
    return " ".join(parts).replace("( ", "(").replace(" )", ")")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    """
    Grammar (standard precedence, left associative):

        expression := term (('+' | '-') term)*
        term       := factor (('*' | '/') factor)*
        factor     := FIELD | '(' expression ')' | '-' factor
    """

    def __init__(self, tokens: Sequence[FormulaToken]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[FormulaToken]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _previous(self) -> Optional[FormulaToken]:
        return self.tokens[self.pos - 1] if self.pos > 0 else None

    def parse(self) -> Node:
        node = self._expression()
        leftover = self._peek()
        if leftover is not None:
            if leftover.operation == ")":
                raise ValidationError(
                    "formula_unbalanced_parentheses",
                    f"Unexpected ')' at order {leftover.order}",
                )
            raise ValidationError(
                "formula_missing_operator",
                f"Operand at order {leftover.order} is not joined to the expression by an operator",
            )
        return node

    def _expression(self) -> Node:
        node = self._term()
        while (tok := self._peek()) is not None and tok.operation in ("+", "-"):
            self.pos += 1
            node = BinaryOp(tok.operation, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while (tok := self._peek()) is not None and tok.operation in ("*", "/"):
            self.pos += 1
            node = BinaryOp(tok.operation, node, self._factor())
        return node

    def _factor(self) -> Node:
        tok = self._peek()
        if tok is None:
            raise ValidationError("formula_dangling_operator", "Formula ends with an operator")

        if tok.field_id:
            self.pos += 1
            return FieldRef(tok.field_id)

        if tok.operation == "(":
            self.pos += 1
            node = self._expression()
            closing = self._peek()
            if closing is None or closing.operation != ")":
                raise ValidationError(
                    "formula_unbalanced_parentheses",
                    f"'(' at order {tok.order} is never closed",
                )
            self.pos += 1
            return node

        if tok.operation == "-":
            self.pos += 1
            nxt = self._peek()
            if nxt is None:
                raise ValidationError("formula_dangling_operator", "Formula ends with an operator")
            if nxt.operation in OPERATORS:
                raise ValidationError(
                    "formula_consecutive_operators",
                    f"Operators at orders {tok.order} and {nxt.order} follow each other",
                )
            return UnaryMinus(self._factor())

        if tok.operation == ")":
            prev = self._previous()
            if prev is not None and prev.operation == "(":
                raise ValidationError("formula_empty_parentheses", f"Empty parentheses before order {tok.order}")
            if prev is None:
                raise ValidationError("formula_unbalanced_parentheses", "Formula starts with ')'")
            raise ValidationError(
                "formula_dangling_operator",
                f"Operator at order {prev.order} has no right-hand operand",
            )

        # binary operator where an operand was expected
        prev = self._previous()
        if prev is not None and prev.operation in OPERATORS:
            raise ValidationError(
                "formula_consecutive_operators",
                f"Operators at orders {prev.order} and {tok.order} follow each other",
            )
        raise ValidationError(
            "formula_dangling_operator",
            f"Operator '{tok.operation}' at order {tok.order} has no left-hand operand",
        )


def _check_parentheses(tokens: Sequence[FormulaToken]) -> None:
    depth = 0
    for token in tokens:
        if token.operation == "(":
            depth += 1
        elif token.operation == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(
                    "formula_unbalanced_parentheses",
                    f"')' at order {token.order} has no matching '('",
                )
    if depth != 0:
        raise ValidationError("formula_unbalanced_parentheses", f"{depth} '(' left unclosed")


# ---------------------------------------------------------------------------
# Compiled formula
# ---------------------------------------------------------------------------

def coerce_numeric(value: Any) -> float:
    """Field value as a number; anything unusable counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, Mapping):
        # multiplier field: {"quantity": .., "price": .., "total": ..}
        return coerce_numeric(value.get("total"))
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _evaluate_node(node: Node, values: Mapping[str, Any]) -> float:
    if isinstance(node, FieldRef):
        return coerce_numeric(values.get(node.field_id))
    if isinstance(node, UnaryMinus):
        return -_evaluate_node(node.operand, values)
    left = _evaluate_node(node.left, values)
    right = _evaluate_node(node.right, values)
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    return left / right if right != 0 else 0.0


@dataclass(frozen=True)
class CompiledFormula:
    tokens: List[FormulaToken]
    tree: Node
    field_ids: List[str] = field(default_factory=list)

    def evaluate(self, values: Mapping[str, Any]) -> float:
        result = _evaluate_node(self.tree, values)
        return result if math.isfinite(result) else 0.0


def compile_formula(tokens: Iterable[TokenLike]) -> CompiledFormula:
    ordered = ordered_tokens(tokens)
    if not ordered:
        raise ValidationError("formula_empty", "Formula has no tokens")
    if not any(t.field_id for t in ordered):
        raise ValidationError("formula_no_field_reference", "Formula must reference at least one field")
    _check_parentheses(ordered)
    tree = _Parser(ordered).parse()
    return CompiledFormula(tokens=ordered, tree=tree, field_ids=referenced_field_ids(ordered))


def validate_formula(tokens: Iterable[TokenLike]) -> None:
    compile_formula(tokens)


def evaluate(formula: Union[CompiledFormula, Iterable[TokenLike]], values: Mapping[str, Any]) -> float:
    """Evaluate a formula (tokens or pre-compiled) against ``{field_id: value}``."""
    if not isinstance(formula, CompiledFormula):
        formula = compile_formula(formula)
    return formula.evaluate(values)


def evaluate_calculations(
    calculations: Iterable[CalculationConfig], values: Mapping[str, Any]
) -> Dict[str, float]:
    """``{calculation_id: value}`` for every active calculation that has a formula."""
    results: Dict[str, float] = {}
    for calc in calculations:
        if not calc.is_active or not calc.formula:
            continue
        try:
            compiled = compile_formula(calc.formula)
        except ValidationError as e:
            raise ValidationError(e.invariant, f"Calculation {calc.calculation_id}: {e}") from e
        results[calc.calculation_id] = compiled.evaluate(values)
    return results


def evaluate_configuration(config: ConfigurationDocument, values: Mapping[str, Any]) -> Dict[str, Dict[str, float]]:
    """Every active calculation of a configuration, grouped by category (``"tradein"`` for trade-in)."""
    if config.is_inspection:
        return {c.category_id: evaluate_calculations(c.calculations, values) for c in config.categories}
    return {"tradein": evaluate_calculations(config.calculations, values)}
